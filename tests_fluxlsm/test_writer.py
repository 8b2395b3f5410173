import shutil
import tempfile
import unittest
from pathlib import Path

import numpy as np
import xarray as xr

from fluxlsm.format.registry import EVAL, MET, load_registry
from fluxlsm.format.writer import build_dataset, output_filename, write_conversion_result
from fluxlsm.pipeline import convert_site

from helpers import SITE, default_config, knock_out, make_raw, make_site_frame

SITE_INFO = {
    "site_lat": -12.49,
    "site_lon": 131.15,
    "site_elevation": 41.0,
    "site_name": "Test site",
    "igbp": "WSA",
    "site_code": SITE,
}


class TestWriter(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        df = knock_out(make_site_frame(years=(2003, 2003)), "TA_F", 0.05)
        cls.result = convert_site(make_raw(df), SITE, "1-3", default_config(), load_registry())

    def setUp(self):
        self.tmp = Path(tempfile.mkdtemp())

    def tearDown(self):
        shutil.rmtree(self.tmp)

    def test_output_filename(self):
        self.assertEqual(
            output_filename(self.result, MET), f"{SITE}_2003-2003_FLUXNET2015_1-3_Met.nc"
        )
        self.assertEqual(
            output_filename(self.result, EVAL, "LaThuile"),
            f"{SITE}_2003-2003_LaThuile_1-3_Flux.nc",
        )

    def test_build_dataset(self):
        ds = build_dataset(self.result, MET, site_info=SITE_INFO)
        self.assertEqual(dict(ds["Tair"].sizes), {"time": 365 * 48, "y": 1, "x": 1})
        self.assertEqual(ds["Tair"].attrs["units"], "K")
        self.assertEqual(ds["Tair"].attrs["standard_name"], "air_temperature")
        self.assertEqual(ds["Tair"].attrs["source_variable"], "TA_F")
        self.assertIn("Tair_qc", ds)
        self.assertNotIn("Qle", ds)
        self.assertAlmostEqual(float(ds["latitude"].values[0, 0]), -12.49)
        self.assertEqual(ds.attrs["IGBP_vegetation_type"], "WSA")

        flux = build_dataset(self.result, EVAL)
        self.assertIn("Qle", flux)
        self.assertNotIn("latitude", flux)

    def test_write_and_read_back(self):
        met_path, flux_path = write_conversion_result(self.result, self.tmp, site_info=SITE_INFO)
        self.assertTrue(met_path.exists())
        self.assertTrue(flux_path.exists())

        with xr.open_dataset(met_path) as ds:
            self.assertEqual(ds.sizes["time"], 365 * 48)
            self.assertEqual(str(ds["time"].values[0])[:19], "2003-01-01T00:00:00")
            expected = self.result.forcing["Tair"].values.astype("float32")
            np.testing.assert_allclose(ds["Tair"].values[:, 0, 0], expected, rtol=1e-6)
            self.assertEqual(ds.attrs["site_code"], SITE)

        with xr.open_dataset(met_path, mask_and_scale=False) as raw:
            self.assertEqual(raw["Tair_qc"].dtype, np.int16)
            self.assertEqual(int(raw["Tair_qc"].attrs["_FillValue"]), -9999)
            flags = raw["Tair_qc"].values[:, 0, 0]
            self.assertEqual(int((flags == -9999).sum()), int(round(0.05 * 365 * 48)))
            self.assertEqual(raw["Tair"].dtype, np.float32)

    def test_out_of_range_companion(self):
        df = make_site_frame(years=(2003, 2003))
        df.iloc[:3, df.columns.get_loc("H_F_MDS")] = 5000.0
        result = convert_site(make_raw(df), SITE, "1-3", default_config(), load_registry())
        _, flux_path = write_conversion_result(result, self.tmp)
        with xr.open_dataset(flux_path, mask_and_scale=False) as ds:
            self.assertIn("Qh_out_of_range", ds)
            self.assertNotIn("Qle_out_of_range", ds)
            flagged = ds["Qh_out_of_range"].values[:, 0, 0]
            np.testing.assert_array_equal(flagged[:4], [1, 1, 1, 0])
            self.assertEqual(int(flagged.sum()), 3)
            self.assertEqual(ds["Qh_qc"].values[0, 0, 0], 0)


if __name__ == "__main__":
    unittest.main()
