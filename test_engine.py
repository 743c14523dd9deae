import unittest
import math
from datetime import datetime, timedelta

from models import (
    Activity,
    Isotope,
    RadioactiveSource,
    VerdictLevel,
    ConfigurationError,
    DepletedSource,
    InsufficientActivity,
    InvalidInput,
)
from constants import DoseUnit, ISOTOPE_LIBRARY, MBQ_PER_MCI
from core_physics import DecayClock
from protocols import DoseCalculator
from safety import SafetyGate

T0 = datetime(2026, 3, 2, 8, 0, 0)

class TestDecayClock(unittest.TestCase):

    def setUp(self):
        """F-18 as used on the hot lab bench: 109.8 min half-life."""
        self.isotope = Isotope(id="f18", half_life_seconds=109.8 * 60, name="Fluorine-18")
        self.source = RadioactiveSource(
            id="vial-A",
            isotope_id="f18",
            calibrated_activity=Activity(3700.0),
            calibration_time=T0,
            volume_ml=10.0,
        )

    def test_01_decay_one_hour(self):
        """3700 MBq calibrated, read one hour later."""
        print("\nTEST 1: One Hour of F-18 Decay")
        remaining = DecayClock.remaining_activity(self.source, self.isotope, T0 + timedelta(minutes=60))
        print(f"   Remaining: {remaining}")

        self.assertEqual(remaining.unit, DoseUnit.MBQ)
        self.assertAlmostEqual(remaining.amount, 3700.0 * 2 ** (-60 / 109.8), delta=1e-6)
        self.assertAlmostEqual(remaining.amount, 2533.4, delta=0.5)

    def test_02_decay_is_monotonic(self):
        """Later instants never hold more activity."""
        previous = None
        for minutes in (0, 1, 30, 109.8, 600, 6000):
            value = DecayClock.remaining_activity(self.source, self.isotope, T0 + timedelta(minutes=minutes))
            if previous is not None:
                self.assertLess(value.amount, previous.amount)
            previous = value

    def test_03_zero_and_negative_elapsed(self):
        at_calibration = DecayClock.remaining_activity(self.source, self.isotope, T0)
        self.assertEqual(at_calibration.amount, 3700.0)

        # Reading before calibration runs the clock backwards
        before = DecayClock.remaining_activity(self.source, self.isotope, T0 - timedelta(minutes=109.8))
        self.assertAlmostEqual(before.amount, 7400.0, places=6)

    def test_04_one_half_life(self):
        half = DecayClock.decay(Activity(100.0), 600.0, T0, T0 + timedelta(seconds=600))
        self.assertAlmostEqual(half.amount, 50.0, places=9)

    def test_05_bad_half_life_is_configuration_error(self):
        """Both the model and the raw decay math refuse a non-positive half-life."""
        with self.assertRaises(ConfigurationError):
            Isotope(id="bad", half_life_seconds=0)
        with self.assertRaises(ConfigurationError):
            Isotope(id="bad", half_life_seconds=-5.0)
        with self.assertRaises(ConfigurationError):
            DecayClock.decay_factor(0.0, 60.0)
        with self.assertRaises(ConfigurationError):
            DecayClock.decay_factor(float("nan"), 60.0)

    def test_06_isotope_mismatch(self):
        tc = Isotope.from_library("tc99m")
        with self.assertRaises(ConfigurationError):
            DecayClock.remaining_activity(self.source, tc, T0)

    def test_07_concentration_of_fresh_vial(self):
        conc = DecayClock.concentration(self.source, self.isotope, T0 + timedelta(minutes=60))
        remaining = DecayClock.remaining_activity(self.source, self.isotope, T0 + timedelta(minutes=60))
        self.assertAlmostEqual(conc.amount, remaining.amount / 10.0, places=9)

class TestActivityUnits(unittest.TestCase):

    def test_01_mci_to_mbq(self):
        self.assertEqual(Activity(1.0, DoseUnit.MCI), Activity(MBQ_PER_MCI, DoseUnit.MBQ))
        self.assertAlmostEqual(Activity(74.0).to(DoseUnit.MCI).amount, 2.0)
        self.assertAlmostEqual(Activity(10.0, DoseUnit.MCI).mbq, 370.0)

    def test_02_mixed_unit_arithmetic(self):
        """Right operand is converted into the left operand's unit."""
        total = Activity(1.0, DoseUnit.MCI) + Activity(37.0, DoseUnit.MBQ)
        self.assertEqual(total.unit, DoseUnit.MCI)
        self.assertAlmostEqual(total.amount, 2.0)

        self.assertTrue(Activity(1.0, DoseUnit.MCI) > Activity(30.0))
        self.assertAlmostEqual((Activity(10.0) * 0.5).amount, 5.0)
        self.assertAlmostEqual((Activity(10.0) / 4).amount, 2.5)

    def test_03_invalid_amounts(self):
        for bad in (-1.0, float("nan"), float("inf"), "12", True):
            with self.subTest(amount=bad):
                with self.assertRaises(InvalidInput):
                    Activity(bad)
        with self.assertRaises(InvalidInput):
            Activity(5.0) - Activity(6.0)
        with self.assertRaises(InvalidInput):
            Activity(5.0) / 0

class TestIsotopeCatalog(unittest.TestCase):

    def test_01_library_entries_are_valid(self):
        for isotope_id in ISOTOPE_LIBRARY.ids():
            isotope = Isotope.from_library(isotope_id)
            self.assertGreater(isotope.half_life_seconds, 0)
            for procedure in isotope.imaging_protocols:
                self.assertIn(procedure, isotope.common_procedures)

    def test_02_f18_reference_values(self):
        f18 = Isotope.from_library("f18")
        self.assertAlmostEqual(f18.half_life_seconds, 1.8295 * 3600)
        self.assertTrue(f18.requires_glucose_check)
        self.assertFalse(Isotope.from_library("tc99m").requires_glucose_check)

    def test_03_unknown_isotope(self):
        with self.assertRaises(ConfigurationError):
            Isotope.from_library("xe133-typo")

    def test_04_procedures_are_an_ordered_set(self):
        iso = Isotope(id="x", half_life_seconds=100.0,
                      common_procedures=("Bone Scan", "Renal Scan", "Bone Scan"))
        self.assertEqual(iso.common_procedures, ("Bone Scan", "Renal Scan"))

    def test_05_protocol_for_unlisted_procedure(self):
        with self.assertRaises(ConfigurationError):
            Isotope(id="x", half_life_seconds=100.0, common_procedures=("Bone Scan",),
                    imaging_protocols={"Cardiac Stress": "Rest 30 min"})

class TestDoseCalculator(unittest.TestCase):

    def setUp(self):
        self.isotope = Isotope(id="f18", half_life_seconds=109.8 * 60)
        self.source = RadioactiveSource(
            id="vial-B", isotope_id="f18",
            calibrated_activity=Activity(3700.0), calibration_time=T0, volume_ml=10.0,
        )

    def test_01_weight_based_dose(self):
        """80 kg at 3.5 MBq/kg."""
        dose = DoseCalculator.recommended_dose(80, 3.5)
        self.assertAlmostEqual(dose.amount, 280.0)
        self.assertEqual(dose.unit, DoseUnit.MBQ)

        in_mci = DoseCalculator.recommended_dose(70, 0.15, DoseUnit.MCI)
        self.assertEqual(in_mci.unit, DoseUnit.MCI)
        self.assertAlmostEqual(in_mci.amount, 10.5)

    def test_02_rejects_non_positive_inputs(self):
        for weight, ratio in ((0, 3.5), (-70, 3.5), (70, 0), (70, -1), (float("nan"), 3.5), (70, float("inf"))):
            with self.subTest(weight=weight, ratio=ratio):
                with self.assertRaises(InvalidInput):
                    DoseCalculator.recommended_dose(weight, ratio)

    def test_03_volume_round_trip(self):
        """required_volume x concentration reproduces the target."""
        at = T0 + timedelta(minutes=45)
        target = DoseCalculator.recommended_dose(80, 3.5)
        volume = DoseCalculator.required_volume(target, self.source, self.isotope, at)
        conc = DecayClock.concentration(self.source, self.isotope, at)

        self.assertLess(abs(volume * conc.amount - target.amount) / target.amount, 1e-9)
        back = DoseCalculator.activity_for_volume(volume, self.source, self.isotope, at)
        self.assertAlmostEqual(back.amount, target.amount, places=6)

    def test_04_target_in_other_unit(self):
        volume_mci = DoseCalculator.required_volume(Activity(1.0, DoseUnit.MCI), self.source, self.isotope, T0)
        volume_mbq = DoseCalculator.required_volume(Activity(37.0), self.source, self.isotope, T0)
        self.assertAlmostEqual(volume_mci, volume_mbq, places=9)
        self.assertAlmostEqual(volume_mbq, 0.1, places=9)

    def test_05_insufficient_activity(self):
        """A vial holding 100 MBq in 10 mL cannot give 150 MBq."""
        small = RadioactiveSource(id="vial-C", isotope_id="f18",
                                  calibrated_activity=Activity(100.0), calibration_time=T0, volume_ml=10.0)
        with self.assertRaises(InsufficientActivity):
            DoseCalculator.required_volume(Activity(150.0), small, self.isotope, T0)
        with self.assertRaises(InsufficientActivity):
            DoseCalculator.activity_for_volume(12.0, small, self.isotope, T0)

    def test_06_zero_target_is_invalid(self):
        with self.assertRaises(InvalidInput):
            DoseCalculator.required_volume(Activity.zero(), self.source, self.isotope, T0)
        with self.assertRaises(InvalidInput):
            DoseCalculator.required_volume(150.0, self.source, self.isotope, T0)

    def test_07_depleted_source(self):
        """Draw the whole vial, then ask for more."""
        from ledger import WithdrawalLedger
        ledger = WithdrawalLedger()
        ledger.record(self.source, self.isotope, 10.0, T0)

        later = T0 + timedelta(minutes=5)
        self.assertTrue(DecayClock.remaining_activity(self.source, self.isotope, later).is_zero)
        with self.assertRaises(DepletedSource):
            DoseCalculator.required_volume(Activity(1.0), self.source, self.isotope, later)
        with self.assertRaises(DepletedSource):
            DecayClock.concentration(self.source, self.isotope, later)

class TestSafetyGate(unittest.TestCase):

    def test_01_glucose_bands(self):
        print("\nTEST: Glucose Screening")
        cases = [
            (210, VerdictLevel.CRITICAL),
            (201, VerdictLevel.CRITICAL),
            (200, VerdictLevel.CAUTION),
            (160, VerdictLevel.CAUTION),
            (150, VerdictLevel.CAUTION),
            (149, VerdictLevel.CLEAR),
            (90, VerdictLevel.CLEAR),
        ]
        for glucose, expected in cases:
            with self.subTest(glucose=glucose):
                verdict = SafetyGate.evaluate(True, glucose)
                print(f"   {glucose} mg/dL -> {verdict.level.value}")
                self.assertEqual(verdict.level, expected)
                if expected != VerdictLevel.CLEAR:
                    self.assertTrue(verdict.reason)

    def test_02_missing_reading(self):
        verdict = SafetyGate.evaluate(True, None)
        self.assertEqual(verdict.level, VerdictLevel.CAUTION)
        self.assertIn("missing", verdict.reason.lower())

    def test_03_not_required(self):
        """Procedures without a glucose check are always clear, whatever the reading."""
        self.assertTrue(SafetyGate.evaluate(False, None).is_clear)
        self.assertTrue(SafetyGate.evaluate(False, 450).is_clear)
        tc = Isotope.from_library("tc99m")
        self.assertTrue(SafetyGate.evaluate_for(tc, 300).is_clear)

    def test_04_bad_reading(self):
        with self.assertRaises(InvalidInput):
            SafetyGate.evaluate(True, -4)
        with self.assertRaises(InvalidInput):
            SafetyGate.evaluate(True, 120.5)

class TestGeneratorYield(unittest.TestCase):

    def setUp(self):
        tc = Isotope.from_library("tc99m")
        self.parent_t = tc.parent_half_life_seconds
        self.daughter_t = tc.half_life_seconds
        self.parent = Activity(1000.0, DoseUnit.MCI)

    def _yield(self, hours, **kwargs):
        return DecayClock.generator_yield(self.parent, self.parent_t, self.daughter_t,
                                          T0, T0 + timedelta(hours=hours), **kwargs)

    def test_01_build_up(self):
        """Nothing to elute straight away, then ingrowth towards equilibrium."""
        print("\nTEST: Mo-99/Tc-99m Build-up")
        self.assertAlmostEqual(self._yield(0).amount, 0.0, places=9)
        six, twelve, day = self._yield(6), self._yield(12), self._yield(23)
        print(f"   6h: {six}  12h: {twelve}  23h: {day}")
        self.assertLess(six.amount, twelve.amount)
        self.assertLess(twelve.amount, day.amount)
        self.assertLess(day.amount, self.parent.amount * 1.2)
        self.assertEqual(day.unit, DoseUnit.MCI)

    def test_02_efficiency_scales_linearly(self):
        full = self._yield(12)
        half = self._yield(12, efficiency_pct=50.0)
        self.assertAlmostEqual(half.amount, full.amount / 2, places=9)

    def test_03_elution_resets_growth(self):
        fresh = DecayClock.generator_yield(self.parent, self.parent_t, self.daughter_t,
                                           T0, T0 + timedelta(hours=24),
                                           last_elution_at=T0 + timedelta(hours=23))
        self.assertLess(fresh.amount, self._yield(24).amount)

    def test_04_invalid_configuration(self):
        with self.assertRaises(InvalidInput):
            self._yield(12, efficiency_pct=0)
        with self.assertRaises(InvalidInput):
            self._yield(12, efficiency_pct=120)
        with self.assertRaises(InvalidInput):
            DecayClock.generator_yield(self.parent, self.parent_t, self.daughter_t,
                                       T0, T0 + timedelta(hours=1),
                                       last_elution_at=T0 - timedelta(hours=1))
        with self.assertRaises(ConfigurationError):
            DecayClock.generator_yield(self.parent, self.daughter_t, self.parent_t,
                                       T0, T0 + timedelta(hours=1))

if __name__ == '__main__':
    unittest.main()
