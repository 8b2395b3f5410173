import shutil
import tempfile
import unittest
from pathlib import Path

from fluxlsm.locator import (
    get_fluxnet_erai_files,
    get_fluxnet_files,
    get_fluxnet_version_no,
    get_path_resolution,
    get_path_site_code,
    locate_sites,
    parse_fluxnet_name,
)


class TestFileNames(unittest.TestCase):
    name = "FLX_AU-How_FLUXNET2015_FULLSET_HH_2001-2014_1-3.csv"

    def test_parse(self):
        parts = parse_fluxnet_name(self.name)
        self.assertEqual(parts["site"], "AU-How")
        self.assertEqual(parts["subset"], "FULLSET")
        self.assertEqual(parts["first"], "2001")
        self.assertEqual(get_path_site_code(Path("/data") / self.name), "AU-How")
        self.assertEqual(get_fluxnet_version_no(self.name), "1-3")
        self.assertEqual(get_path_resolution(self.name), "HH")

    def test_bad_name(self):
        with self.assertRaises(ValueError):
            parse_fluxnet_name("AU-How_2001.csv")


class TestLocateSites(unittest.TestCase):
    def setUp(self):
        self.tmp = Path(tempfile.mkdtemp())
        self.inputs = self.tmp / "inputs"
        self.era = self.tmp / "era"
        self.inputs.mkdir()
        self.era.mkdir()
        for name in [
            "FLX_US-Ha1_FLUXNET2015_FULLSET_HR_1991-2012_1-3.csv",
            "FLX_AU-How_FLUXNET2015_FULLSET_HH_2001-2014_1-3.csv",
            "FLX_AU-How_FLUXNET2015_FULLSET_DD_2001-2014_1-3.csv",
            "FLX_AU-Tum_FLUXNET2015_SUBSET_HH_2001-2014_1-3.csv",
            "notes.txt",
        ]:
            (self.inputs / name).write_text("TIMESTAMP_START\n")
        (self.era / "FLX_AU-How_FLUXNET2015_ERAI_HH_1989-2014_1-3.csv").write_text("TIMESTAMP_START\n")

    def tearDown(self):
        shutil.rmtree(self.tmp)

    def test_get_fluxnet_files(self):
        files = get_fluxnet_files(self.inputs)
        self.assertEqual([get_path_site_code(f) for f in files], ["AU-How", "US-Ha1"])
        self.assertEqual(get_path_resolution(files[0]), "HH")

        subset = get_fluxnet_files(self.inputs, subset="SUBSET")
        self.assertEqual([get_path_site_code(f) for f in subset], ["AU-Tum"])

        one = get_fluxnet_files(self.inputs, site_code="US-Ha1")
        self.assertEqual(len(one), 1)

    def test_erai_files(self):
        self.assertEqual(len(get_fluxnet_erai_files(self.era, "AU-How")), 1)
        self.assertEqual(get_fluxnet_erai_files(self.era, "US-Ha1"), [])

    def test_locate_sites(self):
        tasks = locate_sites(self.inputs, self.era)
        self.assertEqual([t.site_code for t in tasks], ["AU-How", "US-Ha1"])
        self.assertIsNotNone(tasks[0].reanalysis_file)
        self.assertIsNone(tasks[1].reanalysis_file)
        self.assertEqual(tasks[0].version_tag, "1-3")
        self.assertEqual(tasks[0].to_dict()["site_code"], "AU-How")

        without_era = locate_sites(self.inputs)
        self.assertTrue(all(t.reanalysis_file is None for t in without_era))


if __name__ == "__main__":
    unittest.main()
