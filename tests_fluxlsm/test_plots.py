import shutil
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

import matplotlib.pyplot as plt

from fluxlsm.format.registry import load_registry
from fluxlsm.format.registry import MET
from fluxlsm.pipeline import convert_site
from fluxlsm.report.plots import (
    plot_annual_cycle,
    plot_conversion_result,
    plot_diurnal_cycle,
    plot_timeseries,
)

from helpers import SITE, default_config, make_raw, make_site_frame


class TestPlots(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        df = make_site_frame(years=(2003, 2003))
        cls.result = convert_site(make_raw(df), SITE, "1-3", default_config(), load_registry())
        cls.frame = cls.result.to_frame(MET)[["Tair", "SWdown"]]
        cls.units = {"Tair": "K", "SWdown": "W/m^2"}

    def setUp(self):
        self.tmp = Path(tempfile.mkdtemp())

    def tearDown(self):
        shutil.rmtree(self.tmp)
        plt.close("all")

    @patch("matplotlib.pyplot.show")
    def test_annual_cycle(self, mock_show):
        fig = plot_annual_cycle(self.frame, self.units, "annual", print_plot=True)
        mock_show.assert_called_once()
        visible = [ax for ax in fig.axes if ax.get_visible()]
        self.assertEqual(len(visible), 2)
        self.assertEqual(len(visible[0].lines[0].get_xdata()), 12)

    @patch("matplotlib.pyplot.show")
    def test_diurnal_cycle(self, mock_show):
        path = self.tmp / "diurnal.png"
        fig = plot_diurnal_cycle(self.frame, self.units, output_path=path)
        mock_show.assert_not_called()
        self.assertTrue(path.exists())
        self.assertEqual(len(fig.axes[0].lines), 4)

    @patch("matplotlib.pyplot.show")
    def test_timeseries(self, mock_show):
        path = self.tmp / "ts.png"
        plot_timeseries(self.frame, self.units, step_seconds=1800, output_path=path)
        self.assertTrue(path.exists())

    @patch("matplotlib.pyplot.show")
    def test_plot_conversion_result(self, mock_show):
        paths = plot_conversion_result(self.result, ["annual", "timeseries"], self.tmp)
        names = sorted(p.name for p in paths)
        self.assertEqual(names, [
            f"{SITE}_2003-2003_annual_Flux.png",
            f"{SITE}_2003-2003_annual_Met.png",
            f"{SITE}_2003-2003_timeseries_Flux.png",
            f"{SITE}_2003-2003_timeseries_Met.png",
        ])
        for p in paths:
            self.assertTrue(p.exists())
        mock_show.assert_not_called()

    def test_unknown_plot_type(self):
        with self.assertRaises(ValueError):
            plot_conversion_result(self.result, ["windrose"], self.tmp)


if __name__ == "__main__":
    unittest.main()
