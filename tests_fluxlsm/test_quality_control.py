import unittest

import numpy as np
import pandas as pd

from fluxlsm.config import ThresholdPolicy
from fluxlsm.errors import EssentialVariableDropped
from fluxlsm.format.reformatter import Reformatter
from fluxlsm.format.registry import EVAL, MET, load_registry
from fluxlsm.qaqc.flags import QCFlag, count_flags, flags_from_source
from fluxlsm.qaqc.quality_control import (
    QCStats,
    QualityControlEvaluator,
    decide,
    summarize_flags,
)

from helpers import SITE, knock_out, make_raw, make_site_frame


def stats_from(n=1000, good=0, med=0, poor=0, missing=0):
    return QCStats(
        n_expected=n,
        n_measured=n - good - med - poor - missing,
        n_good=good,
        n_med=med,
        n_poor=poor,
        n_missing=missing,
    )


class TestFlags(unittest.TestCase):
    def test_flags_from_source(self):
        values = pd.Series([1.0, 2.0, np.nan, 4.0, 5.0, 6.0])
        codes = pd.Series([0, 1, 0, 3, 7, np.nan])
        flags = flags_from_source(values, codes)
        self.assertEqual(
            flags.tolist(),
            [QCFlag.MEASURED, QCFlag.GOOD_GAPFILL, QCFlag.MISSING,
             QCFlag.POOR_GAPFILL, QCFlag.POOR_GAPFILL, QCFlag.MEASURED],
        )

    def test_flags_without_qc_column(self):
        flags = flags_from_source(pd.Series([1.0, np.nan]))
        self.assertEqual(flags.tolist(), [QCFlag.MEASURED, QCFlag.MISSING])

    def test_count_flags(self):
        counts = count_flags(np.array([0, 0, 2, -9999]))
        self.assertEqual(counts[QCFlag.MEASURED], 2)
        self.assertEqual(counts[QCFlag.MEDIUM_GAPFILL], 1)
        self.assertEqual(counts[QCFlag.MISSING], 1)

    def test_gapfill_tiers(self):
        self.assertTrue(QCFlag.GOOD_GAPFILL.is_gapfill)
        self.assertFalse(QCFlag.MEASURED.is_gapfill)
        self.assertFalse(QCFlag.MISSING.is_gapfill)


class TestSummarizeAndDecide(unittest.TestCase):
    def test_truncated_sequence_counts_as_missing(self):
        stats = summarize_flags(np.zeros(80, dtype=int), n_expected=100)
        self.assertAlmostEqual(stats.pct_missing, 20.0)
        self.assertEqual(stats.n_measured, 80)

    def test_percentages(self):
        flags = np.array([0] * 6 + [1, 2, 3, -9999])
        stats = summarize_flags(flags)
        self.assertAlmostEqual(stats.pct_gapfill_good, 10.0)
        self.assertAlmostEqual(stats.pct_gapfill_all, 30.0)
        self.assertAlmostEqual(stats.pct_missing, 10.0)
        self.assertAlmostEqual(stats.pct_for(QCFlag.MEDIUM_GAPFILL), 10.0)

    def test_fully_measured_always_retained(self):
        strict = ThresholdPolicy(
            missing_max=0, gapfill_all_max=0, gapfill_good_max=0,
            gapfill_med_max=0, gapfill_poor_max=0, include_all_eval=False,
        )
        for category in (MET, EVAL):
            retained, _ = decide(stats_from(), strict, category)
            self.assertTrue(retained)

    def test_missing_checked_first(self):
        policy = ThresholdPolicy(missing_max=10, gapfill_all_max=50)
        retained, reason = decide(stats_from(missing=150), policy, MET)
        self.assertFalse(retained)
        self.assertIn("missing", reason)

    def test_gapfill_all_supersedes_tiers(self):
        policy = ThresholdPolicy(missing_max=10, gapfill_all_max=20, gapfill_good_max=5)
        retained, _ = decide(stats_from(good=100), policy, MET)
        self.assertTrue(retained)
        retained, reason = decide(stats_from(good=150, med=100), policy, MET)
        self.assertFalse(retained)
        self.assertIn("gap-filled", reason)

    def test_tier_thresholds(self):
        policy = ThresholdPolicy(missing_max=10, gapfill_good_max=5, gapfill_poor_max=1)
        self.assertTrue(decide(stats_from(good=40), policy, MET)[0])
        retained, reason = decide(stats_from(good=40, poor=20), policy, MET)
        self.assertFalse(retained)
        self.assertIn("poor", reason)
        # unset tiers are not checked
        self.assertTrue(decide(stats_from(med=90), policy, MET)[0])

    def test_include_all_eval(self):
        stats = stats_from(missing=900)
        self.assertTrue(decide(stats, ThresholdPolicy(missing_max=10), EVAL)[0])
        self.assertFalse(
            decide(stats, ThresholdPolicy(missing_max=10, include_all_eval=False), EVAL)[0]
        )

    def test_policy_validation(self):
        with self.assertRaises(ValueError):
            ThresholdPolicy(missing_max=150)
        with self.assertRaises(ValueError):
            ThresholdPolicy(missing_max=10, min_consecutive_years=0)


class TestQualityControlEvaluator(unittest.TestCase):
    def setUp(self):
        self.registry = load_registry()
        self.reformatter = Reformatter(self.registry)

    def mapped(self, df):
        return self.reformatter.process(make_raw(df), SITE, "1-3")

    def test_complete_site_retains_everything_present(self):
        dataset = self.mapped(make_site_frame())
        evaluation = QualityControlEvaluator(ThresholdPolicy(missing_max=15)).evaluate(dataset)
        self.assertEqual(evaluation.dropped, {})
        self.assertEqual(evaluation.retained, dataset.variables)

    def test_essential_over_threshold_fails(self):
        df = knock_out(make_site_frame(), "TA_F", 0.20)
        dataset = self.mapped(df)
        with self.assertRaises(EssentialVariableDropped) as ctx:
            QualityControlEvaluator(ThresholdPolicy(missing_max=15)).evaluate(dataset)
        self.assertEqual(ctx.exception.variable, "Tair")

    def test_absent_essential_fails(self):
        dataset = self.mapped(make_site_frame().drop(columns=["WS_F", "WS_F_QC"]))
        with self.assertRaises(EssentialVariableDropped) as ctx:
            QualityControlEvaluator(ThresholdPolicy(missing_max=15)).evaluate(dataset)
        self.assertEqual(ctx.exception.variable, "Wind")

    def test_non_essential_dropped_softly(self):
        df = knock_out(make_site_frame(), "H_F_MDS", 0.5)
        policy = ThresholdPolicy(missing_max=15, include_all_eval=False)
        evaluation = QualityControlEvaluator(policy).evaluate(self.mapped(df))
        self.assertIn("Qh", evaluation.dropped)
        self.assertNotIn("Qh", evaluation.retained)
        self.assertEqual(evaluation.soft_drops[0].variable, "Qh")

    def test_acceptable_years(self):
        df = make_site_frame(years=(2003, 2005))
        in_2004 = df.index.year == 2004
        df.loc[in_2004, "SW_IN_F_QC"] = 1
        dataset = self.mapped(df)
        evaluator = QualityControlEvaluator(ThresholdPolicy(missing_max=15, gapfill_all_max=20))
        self.assertEqual(evaluator.acceptable_years(dataset), [2003, 2005])

        table = evaluator.yearly_stats(dataset, ["SWdown"])
        row = table[table["year"] == 2004].iloc[0]
        self.assertFalse(row["acceptable"])

    def test_partial_year_counts_missing(self):
        df = make_site_frame(years=(2003, 2004))
        df.loc[df.index >= "2004-07-01", ["TA_F"]] = np.nan
        evaluator = QualityControlEvaluator(ThresholdPolicy(missing_max=15))
        self.assertEqual(evaluator.acceptable_years(self.mapped(df)), [2003])


if __name__ == "__main__":
    unittest.main()
