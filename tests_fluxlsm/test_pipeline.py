import argparse
import json
import shutil
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

import numpy as np

from fluxlsm.config import ConversionConfig, ThresholdPolicy
from fluxlsm.dataset import SiteStatus
from fluxlsm.errors import (
    EssentialVariableDropped,
    InsufficientContiguousYears,
    MissingAuxiliarySource,
    OutOfRangeValue,
)
from fluxlsm.format.registry import EVAL, MET, load_registry, registry_from_dataframe
from fluxlsm.pipeline import (
    Pipeline,
    SiteConversion,
    SiteState,
    build_config,
    convert_site,
)
from fluxlsm.qaqc.flags import QCFlag

from helpers import (
    SITE,
    default_config,
    era_file_name,
    knock_out,
    make_era_frame,
    make_raw,
    make_site_frame,
    site_file_name,
    write_fluxnet_csv,
)


class TestConvertSite(unittest.TestCase):
    def setUp(self):
        self.registry = load_registry()
        self.config = default_config()

    def convert(self, df, config=None, registry=None, reanalysis=None):
        return convert_site(
            make_raw(df), SITE, "1-3", config or self.config,
            registry or self.registry, reanalysis=reanalysis,
        )

    def test_complete_site(self):
        result = self.convert(make_site_frame())
        self.assertEqual(result.status, SiteStatus.SUCCESS)
        self.assertEqual(result.years, [2003, 2004])
        order = self.registry.output_names()
        self.assertEqual(list(result.forcing), [n for n in order if n in result.forcing])
        for name in ("Tair", "SWdown", "LWdown", "VPD", "PSurf", "Rainf", "Wind", "Qair"):
            self.assertIn(name, result.forcing)
        for name in ("Qle", "Qh", "NEE", "GPP", "Rnet"):
            self.assertIn(name, result.evaluation)
        for rec in list(result.forcing.values()) + list(result.evaluation.values()):
            self.assertEqual(len(rec.values), result.time_axis.n_steps)
            self.assertEqual(len(rec.flags), result.time_axis.n_steps)
        self.assertTrue(all(r.category == MET for r in result.forcing.values()))
        self.assertTrue(all(r.category == EVAL for r in result.evaluation.values()))

    def test_unmatched_columns_reported(self):
        result = self.convert(make_site_frame())
        self.assertEqual(result.passthrough, ["CUSTOM_SENSOR"])
        unmatched = [r for r in result.report if r.status == "unmatched"]
        self.assertEqual([r.source_name for r in unmatched], ["CUSTOM_SENSOR"])
        absent = {r.output_name for r in result.report if r.status == "absent"}
        self.assertIn("SoilMoist1", absent)
        # absent optional variables do not degrade the site
        self.assertEqual(result.status, SiteStatus.SUCCESS)

    def test_air_temperature_with_small_gaps(self):
        df = knock_out(make_site_frame(), "TA_F", 0.05)
        tair = self.convert(df).forcing["Tair"]
        present = tair.values[~np.isnan(tair.values)]
        self.assertTrue((present >= 273.0).all() and (present <= 303.0).all())
        self.assertEqual(tair.units, "K")
        n_missing = int((tair.flags == QCFlag.MISSING).sum())
        self.assertEqual(n_missing, int(round(0.05 * len(df))))

    def test_air_temperature_with_large_gaps_fails(self):
        df = knock_out(make_site_frame(), "TA_F", 0.20)
        conversion = SiteConversion(make_raw(df), SITE, "1-3", self.config, self.registry)
        with self.assertRaises(EssentialVariableDropped):
            conversion.run()
        self.assertEqual(conversion.state, SiteState.FAILED)
        self.assertEqual(conversion.failed_after, SiteState.MAPPED)

    def test_precipitation_rate(self):
        df = make_site_frame()
        df["P_F"] = 1.0
        rainf = self.convert(df).forcing["Rainf"]
        np.testing.assert_allclose(rainf.values, 1.0 / 1800)

    def test_conversion_is_idempotent(self):
        df = knock_out(make_site_frame(), "SW_IN_F", 0.05)
        first = self.convert(df)
        second = self.convert(df)
        self.assertEqual(list(first.forcing), list(second.forcing))
        for name, rec in first.forcing.items():
            np.testing.assert_array_equal(rec.values, second.forcing[name].values)
            np.testing.assert_array_equal(rec.flags, second.forcing[name].flags)
        self.assertEqual(
            [r.to_dict() for r in first.report], [r.to_dict() for r in second.report]
        )

    def test_gapfill(self):
        df = knock_out(make_site_frame(), "TA_F", 0.10)
        config = default_config(met_gapfill="ERAinterim")
        conversion = SiteConversion(
            make_raw(df), SITE, "1-3", config, self.registry, reanalysis=make_era_frame()
        )
        result = conversion.run()
        self.assertIn(SiteState.GAP_FILLED, conversion.history)
        flags = result.forcing["Tair"].flags
        self.assertFalse((flags == QCFlag.MISSING).any())
        self.assertEqual(int((flags == QCFlag.MEDIUM_GAPFILL).sum()), int(round(0.1 * len(df))))
        row = next(r for r in result.report if r.output_name == "Tair")
        self.assertEqual(row.n_filled, int(round(0.1 * len(df))))

    def test_gapfill_skipped_when_disabled(self):
        conversion = SiteConversion(make_raw(make_site_frame()), SITE, "1-3", self.config, self.registry)
        conversion.run()
        self.assertNotIn(SiteState.GAP_FILLED, conversion.history)
        self.assertEqual(conversion.state, SiteState.EMITTED)

    def test_gapfill_requires_reanalysis(self):
        config = default_config(met_gapfill="ERAinterim")
        with self.assertRaises(MissingAuxiliarySource):
            self.convert(make_site_frame(), config=config)

    def test_years_trimmed_to_longest_run(self):
        df = make_site_frame(years=(2003, 2005))
        bad = (df.index.year == 2004) & (df.index.month <= 6)
        df.loc[bad, "SW_IN_F_QC"] = 1

        result = self.convert(df)
        self.assertEqual(result.years, [2005])

        strict = default_config(
            policy=ThresholdPolicy(missing_max=15, gapfill_all_max=20, min_consecutive_years=2)
        )
        with self.assertRaises(InsufficientContiguousYears):
            self.convert(df, config=strict)

    def test_soft_degraded_when_evaluation_dropped(self):
        df = knock_out(make_site_frame(), "H_F_MDS", 0.5)
        config = default_config(
            policy=ThresholdPolicy(missing_max=15, gapfill_all_max=20, include_all_eval=False)
        )
        result = self.convert(df, config=config)
        self.assertEqual(result.status, SiteStatus.SOFT_DEGRADED)
        self.assertNotIn("Qh", result.evaluation)
        row = next(r for r in result.report if r.output_name == "Qh")
        self.assertEqual(row.status, "dropped")
        self.assertAlmostEqual(row.pct_missing, 50.0, places=1)

    def test_conversion_failure_of_optional_variable(self):
        table = self.registry.to_dataframe()
        table.loc[table["output_name"] == "Qair", "source_unit"] = "g/kg"
        registry = registry_from_dataframe(table)
        result = self.convert(make_site_frame(), registry=registry)
        self.assertNotIn("Qair", result.forcing)
        self.assertIn("RH", result.forcing)
        row = next(r for r in result.report if r.output_name == "Qair")
        self.assertEqual(row.status, "conversion_failed")
        self.assertEqual(result.status, SiteStatus.SOFT_DEGRADED)


class TestOutOfRangeHandling(unittest.TestCase):
    def setUp(self):
        self.registry = load_registry()
        self.df = make_site_frame(years=(2003, 2003))

    def convert(self, df, how):
        return convert_site(
            make_raw(df), SITE, "1-3", default_config(out_of_range=how), self.registry
        )

    def with_values(self, column, value, n):
        df = self.df.copy()
        df.iloc[:n, df.columns.get_loc(column)] = value
        return df

    def test_flag_keeps_values_and_marks_steps(self):
        result = self.convert(self.with_values("H_F_MDS", 5000.0, 10), "flag")
        qh = result.evaluation["Qh"]
        np.testing.assert_array_equal(qh.values[:10], np.full(10, 5000.0))
        self.assertTrue(qh.out_of_range[:10].all())
        self.assertFalse(qh.out_of_range[10:].any())
        self.assertFalse(result.forcing["Tair"].out_of_range.any())
        row = next(r for r in result.report if r.output_name == "Qh")
        self.assertEqual(row.n_out_of_range, 10)
        self.assertEqual(result.status, SiteStatus.SUCCESS)

    def test_mask_sets_missing(self):
        result = self.convert(self.with_values("H_F_MDS", 5000.0, 10), "mask")
        qh = result.evaluation["Qh"]
        self.assertTrue(np.isnan(qh.values[:10]).all())
        self.assertTrue((qh.flags[:10] == QCFlag.MISSING).all())
        self.assertTrue(qh.out_of_range[:10].all())
        self.assertFalse(np.isnan(qh.values[10:]).any())

    def test_masked_temperature_not_used_for_humidity(self):
        result = self.convert(self.with_values("TA_F", 100.0, 5), "mask")
        tair = result.forcing["Tair"]
        qair = result.forcing["Qair"]
        self.assertTrue((tair.flags[:5] == QCFlag.MISSING).all())
        self.assertTrue(np.isnan(qair.values[:5]).all())
        self.assertTrue(np.isfinite(qair.values[5:]).all())

    def test_raise_on_evaluation_variable_degrades_site(self):
        result = self.convert(self.with_values("H_F_MDS", 5000.0, 10), "raise")
        self.assertNotIn("Qh", result.evaluation)
        self.assertIn("Qle", result.evaluation)
        row = next(r for r in result.report if r.output_name == "Qh")
        self.assertEqual(row.status, "conversion_failed")
        self.assertIn("10 values outside", row.reason)
        self.assertEqual(result.status, SiteStatus.SOFT_DEGRADED)

    def test_raise_on_essential_variable_fails_site(self):
        conversion = SiteConversion(
            make_raw(self.with_values("TA_F", 100.0, 10)), SITE, "1-3",
            default_config(out_of_range="raise"), self.registry,
        )
        with self.assertRaises(OutOfRangeValue):
            conversion.run()
        self.assertEqual(conversion.state, SiteState.FAILED)

    def test_resolution_change_fails_site(self):
        tmp = Path(tempfile.mkdtemp())
        self.addCleanup(shutil.rmtree, tmp)
        hourly = make_site_frame(years=(2003, 2003), step_seconds=3600)
        path = tmp / site_file_name(SITE, (2003, 2003))
        write_fluxnet_csv(hourly[hourly.index < "2003-07-01"], path, step_seconds=3600)
        write_fluxnet_csv(self.df[self.df.index >= "2003-07-01"], tmp / "part.csv")
        with open(path, "a") as f:
            f.write("\n".join((tmp / "part.csv").read_text().splitlines()[1:]) + "\n")

        result = Pipeline(config=default_config()).process_file(path, tmp / "out")
        self.assertEqual(result.status, SiteStatus.FAILED)
        self.assertEqual(result.error_type, "InconsistentTimeStep")
        self.assertEqual(result.output_files, [])


class TestPipeline(unittest.TestCase):
    def setUp(self):
        self.tmp = Path(tempfile.mkdtemp())
        self.inputs = self.tmp / "inputs"
        self.era = self.tmp / "era"
        self.outputs = self.tmp / "outputs"
        for d in (self.inputs, self.era):
            d.mkdir()
        self.years = (2003, 2003)

    def tearDown(self):
        shutil.rmtree(self.tmp)

    def write_site(self, site, df=None, era=True):
        df = make_site_frame(self.years) if df is None else df
        write_fluxnet_csv(df, self.inputs / site_file_name(site, self.years))
        if era:
            write_fluxnet_csv(make_era_frame(self.years), self.era / era_file_name(site, self.years))

    def test_pipeline_init(self):
        pipeline = Pipeline(config=default_config(limit_vars=("Qle",)))
        self.assertIn("Qle", pipeline.registry.output_names())
        self.assertNotIn("Qh", pipeline.registry.output_names())
        self.assertIsNotNone(pipeline.logger)

    def test_process_file_success(self):
        self.write_site(SITE)
        pipeline = Pipeline(config=default_config())
        result = pipeline.process_file(self.inputs / site_file_name(SITE, self.years), self.outputs)

        self.assertTrue(result.success, msg=result.error_message)
        self.assertEqual(result.status, SiteStatus.SUCCESS)
        self.assertEqual(result.state, "Emitted")
        self.assertEqual(result.years, [2003])
        names = sorted(p.name for p in result.output_files)
        self.assertEqual(names, [
            f"{SITE}_2003-2003_FLUXNET2015_1-3_Flux.nc",
            f"{SITE}_2003-2003_FLUXNET2015_1-3_Met.nc",
        ])
        for path in result.output_files:
            self.assertTrue(path.exists())
        self.assertTrue((self.outputs / "reports" / f"{SITE}_2003-2003_variables.csv").exists())
        json.dumps(result.to_dict())
        self.assertIn("Conversion Result: SUCCESS", result.summary())

    def test_failed_site_writes_nothing(self):
        df = knock_out(make_site_frame(self.years), "TA_F", 0.3)
        self.write_site(SITE, df)
        pipeline = Pipeline(config=default_config())
        result = pipeline.process_file(self.inputs / site_file_name(SITE, self.years), self.outputs)

        self.assertFalse(result.success)
        self.assertEqual(result.status, SiteStatus.FAILED)
        self.assertEqual(result.error_type, "EssentialVariableDropped")
        self.assertEqual(result.failed_after, "Mapped")
        self.assertEqual(result.output_files, [])
        self.assertEqual(list(self.outputs.glob("*.nc")), [])

    @patch("fluxlsm.pipeline.plot_conversion_result", side_effect=RuntimeError("no display"))
    def test_plot_failure_does_not_fail_site(self, mock_plot):
        self.write_site(SITE)
        pipeline = Pipeline(config=default_config(plots=("annual",)))
        result = pipeline.process_file(self.inputs / site_file_name(SITE, self.years), self.outputs)
        mock_plot.assert_called_once()
        self.assertEqual(result.status, SiteStatus.SUCCESS)
        self.assertEqual(result.plot_files, [])

    def test_batch_process(self):
        self.write_site("AU-How")
        self.write_site("US-Ha1", knock_out(make_site_frame(self.years), "TA_F", 0.3))
        pipeline = Pipeline(config=default_config())
        results = pipeline.batch_process(self.inputs, self.outputs)

        self.assertEqual([r.site_code for r in results], ["AU-How", "US-Ha1"])
        self.assertEqual(results[0].status, SiteStatus.SUCCESS)
        self.assertEqual(results[1].status, SiteStatus.FAILED)
        self.assertEqual(list(self.outputs.glob("US-Ha1*.nc")), [])

        summary = json.loads((self.outputs / "batch_summary.json").read_text())
        self.assertEqual(summary["n_total"], 2)
        self.assertEqual(summary["n_failed"], 1)
        self.assertTrue((self.outputs / "batch_summary.csv").exists())

    def test_batch_preflight_aborts_before_any_site(self):
        self.write_site("AU-How")
        self.write_site("US-Ha1", era=False)
        pipeline = Pipeline(config=default_config(met_gapfill="ERAinterim"))
        with self.assertRaises(MissingAuxiliarySource) as ctx:
            pipeline.batch_process(self.inputs, self.outputs, self.era)
        self.assertEqual(ctx.exception.site_codes, ["US-Ha1"])
        self.assertEqual(list(self.outputs.glob("*.nc")), [])

    def test_batch_with_gapfill(self):
        self.write_site("AU-How", knock_out(make_site_frame(self.years), "TA_F", 0.1))
        pipeline = Pipeline(config=default_config(met_gapfill="ERAinterim"))
        results = pipeline.batch_process(self.inputs, self.outputs, self.era)
        self.assertEqual(results[0].status, SiteStatus.SUCCESS)
        row = next(r for r in results[0].report if r["output_name"] == "Tair")
        self.assertEqual(row["n_filled"], int(round(0.1 * 365 * 48)))

    def test_parallel_matches_serial(self):
        self.write_site("AU-How")
        self.write_site("US-Ha1")
        serial = Pipeline(config=default_config()).batch_process(self.inputs, self.outputs / "serial")
        parallel = Pipeline(config=default_config(n_workers=2)).batch_process(
            self.inputs, self.outputs / "parallel"
        )
        self.assertEqual([r.site_code for r in parallel], [r.site_code for r in serial])
        self.assertEqual([r.status for r in parallel], [r.status for r in serial])
        def decisions(results):
            return [[(row["output_name"], row["status"]) for row in r.report] for r in results]

        self.assertEqual(decisions(parallel), decisions(serial))

    def test_empty_input_dir(self):
        results = Pipeline(config=default_config()).batch_process(self.inputs, self.outputs)
        self.assertEqual(results, [])


class TestBuildConfig(unittest.TestCase):
    def namespace(self, **kwargs):
        defaults = dict(
            config=None, missing=None, gapfill_all=None, gapfill_good=None,
            gapfill_med=None, gapfill_poor=None, min_yrs=None, exclude_bad_eval=False,
            met_gapfill=None, plot=None, workers=None, subset=None, site_config_dir=None,
        )
        defaults.update(kwargs)
        return argparse.Namespace(**defaults)

    def test_overrides(self):
        config = build_config(self.namespace(
            missing=10.0, gapfill_all=30.0, min_yrs=3, met_gapfill="ERAinterim",
            plot=["annual"], workers=4, exclude_bad_eval=True,
        ))
        self.assertEqual(config.policy.missing_max, 10.0)
        self.assertEqual(config.policy.gapfill_all_max, 30.0)
        self.assertEqual(config.policy.min_consecutive_years, 3)
        self.assertFalse(config.policy.include_all_eval)
        self.assertEqual(config.met_gapfill, "ERAinterim")
        self.assertEqual(config.plots, ("annual",))
        self.assertEqual(config.n_workers, 4)

    def test_defaults(self):
        self.assertEqual(build_config(self.namespace()), ConversionConfig())

    def test_disable_gapfill(self):
        config = build_config(self.namespace(met_gapfill="none"))
        self.assertFalse(config.gapfill_enabled)


if __name__ == "__main__":
    unittest.main()
