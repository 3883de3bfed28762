import unittest

import pytest

from velopass.domain import (
    MEMBER_EBIKE_PER_MINUTE,
    MEMBER_INCLUDED_MINUTES,
    MEMBERSHIP_PRICE,
    NON_MEMBER_INCLUDED_MINUTES,
    SINGLE_RIDE_PRICE,
    TARIFF_METRICS,
    Passage,
    RetrievalResult,
)
from velopass.policy_parser import (
    ANNUAL_CONVERSION_NOTE,
    METRICS_BY_KEY,
    POLICY_METRICS,
    CitationRegistry,
    CurrencyCandidate,
    classify_unit,
    extract_currency_candidates,
    extract_minutes,
    extract_per_minute,
    filter_plausible,
    find_best_passage,
    parse_policy,
    select_candidate,
    sentence_containing,
)

SOURCE = "https://divvybikes.com/pricing"
CAPTURED = "2024-03-01T00:00:00+00:00"


def _result(key, *texts):
    passages = [Passage(text=t, source=SOURCE, score=10.0 - i) for i, t in enumerate(texts)]
    return RetrievalResult(query=key, source=SOURCE, passages=passages, fetched_at=CAPTURED)


class TestCurrencyCandidates(unittest.TestCase):
    def test_finds_every_dollar_amount(self):
        candidates = extract_currency_candidates("Pay $3.30 per ride, $0.18 per minute, or $130 a year.")
        self.assertEqual([c.value for c in candidates], [3.30, 0.18, 130.0])

    def test_no_amounts(self):
        self.assertEqual(extract_currency_candidates("Free to join"), [])

    def test_unit_classification_order(self):
        self.assertEqual(classify_unit("$0.18 per minute"), "minute")
        self.assertEqual(classify_unit("$0.18/min for members"), "minute")
        self.assertEqual(classify_unit("$17 monthly"), "month")
        self.assertEqual(classify_unit("Annual plan $143.90"), "year")
        self.assertEqual(classify_unit("$1 to unlock"), "unlock")
        self.assertEqual(classify_unit("$3.30 a ride"), "ride")
        self.assertEqual(classify_unit("$5 scooter"), "scooter")
        self.assertIsNone(classify_unit("$5 flat"))

    def test_filter_plausible_falls_back_to_all(self):
        candidates = [CurrencyCandidate(1.0, None, ""), CurrencyCandidate(50.0, None, "")]
        self.assertEqual([c.value for c in filter_plausible(candidates, min_value=10)], [50.0])
        self.assertEqual(filter_plausible(candidates, min_value=100), candidates)

    def test_select_candidate_prefers_then_falls_back(self):
        yearly = CurrencyCandidate(130.0, "year", "")
        monthly = CurrencyCandidate(17.0, "month", "")
        other = CurrencyCandidate(5.0, None, "")
        self.assertIs(select_candidate([yearly, monthly], ["month"], ["year"]), monthly)
        self.assertIs(select_candidate([other, yearly], ["month"], ["year"]), yearly)
        self.assertIs(select_candidate([other], ["month"]), other)
        self.assertIsNone(select_candidate([], ["month"]))


class TestCitationRegistry(unittest.TestCase):
    def test_identical_snippets_share_an_id(self):
        registry = CitationRegistry(captured_at=CAPTURED)
        first = registry.register("Members pay $17 monthly.", SOURCE)
        again = registry.register("  Members pay $17 monthly.  ", SOURCE)
        other = registry.register("Single ride $3.30.", SOURCE)

        self.assertEqual(first, "C1")
        self.assertEqual(again, "C1")
        self.assertEqual(other, "C2")
        self.assertEqual([c.id for c in registry.citations], ["C1", "C2"])
        self.assertEqual(registry.citations[0].captured_at, CAPTURED)


class TestSentenceMatches(unittest.TestCase):
    def test_per_minute_rate_cites_its_sentence(self):
        text = "Unlock for $1. E-bikes cost $0.42 per minute for non members."
        value, sentence = extract_per_minute(text)
        self.assertEqual(value, 0.42)
        self.assertEqual(sentence, "E-bikes cost $0.42 per minute for non members.")

    def test_minutes_accepts_hyphenated_form(self):
        value, sentence = extract_minutes("Members pay $17 monthly for unlimited 45-minute classic rides.")
        self.assertEqual(value, 45)
        self.assertTrue(sentence.startswith("Members pay"))

    def test_no_match(self):
        self.assertIsNone(extract_per_minute("Just $3.30 a ride."))
        self.assertIsNone(extract_minutes("Unlimited rides."))

    def test_sentence_containing_falls_back_to_whole_text(self):
        self.assertEqual(sentence_containing("One. Two.", 99), "One. Two.")

    def test_best_passage_requires_a_keyword(self):
        passages = [
            Passage(text="Totally unrelated $5 text", source=SOURCE, score=50.0),
            Passage(text="Member e-bike rides are $0.17 per minute", source=SOURCE, score=1.0),
        ]
        best = find_best_passage(passages, ["member", "e-bike"])
        self.assertEqual(best.text, "Member e-bike rides are $0.17 per minute")
        self.assertIsNone(find_best_passage(passages[:1], ["member"]))


class TestParsePolicy(unittest.TestCase):
    def test_metric_catalogue_covers_every_tariff(self):
        self.assertEqual(tuple(spec.key for spec in POLICY_METRICS), TARIFF_METRICS)
        self.assertEqual(
            METRICS_BY_KEY[MEMBERSHIP_PRICE].build_query("divvybikes.com"),
            "divvybikes.com monthly membership price",
        )

    def test_nothing_found_binds_defaults_with_assumptions(self):
        policy = parse_policy(SOURCE, {})

        self.assertEqual(set(policy.values), set(TARIFF_METRICS))
        self.assertEqual(policy.amount(MEMBERSHIP_PRICE), 0.0)
        self.assertEqual(policy.amount(MEMBER_INCLUDED_MINUTES), 30)
        self.assertEqual(policy.amount(NON_MEMBER_INCLUDED_MINUTES), 30)
        self.assertEqual(policy.citations, [])
        self.assertEqual(len(policy.assumptions), len(TARIFF_METRICS))
        self.assertIn(
            "Could not find an explicit single-ride base fare; treated as 0.", policy.assumptions
        )
        self.assertTrue(all(v.citation_id is None for v in policy.values.values()))

    def test_monthly_price_selected_and_cited(self):
        policy = parse_policy(
            SOURCE,
            {MEMBERSHIP_PRICE: _result(MEMBERSHIP_PRICE, "Members pay $17 monthly, or $143.90 per year.")},
        )
        self.assertEqual(policy.amount(MEMBERSHIP_PRICE), 17.0)
        citation_id = policy.citation_for(MEMBERSHIP_PRICE)
        cited = next(c for c in policy.citations if c.id == citation_id)
        self.assertIn("$17", cited.text)
        self.assertEqual(cited.source, SOURCE)
        self.assertEqual(policy.captured_at, CAPTURED)

    def test_annual_price_is_converted_to_monthly(self):
        policy = parse_policy(
            SOURCE,
            {MEMBERSHIP_PRICE: _result(MEMBERSHIP_PRICE, "Annual membership is $143.90 per year.")},
        )
        self.assertAlmostEqual(policy.amount(MEMBERSHIP_PRICE), 143.90 / 12)
        self.assertIn(ANNUAL_CONVERSION_NOTE, policy.assumptions)

    def test_excluded_phrases_skip_a_passage(self):
        policy = parse_policy(
            SOURCE,
            {
                MEMBERSHIP_PRICE: _result(
                    MEMBERSHIP_PRICE,
                    "Divvy for Everyone members pay $5 monthly.",
                    "Membership is $17 monthly for everyone else.",
                )
            },
        )
        self.assertEqual(policy.amount(MEMBERSHIP_PRICE), 17.0)

    def test_single_ride_range_filters_small_amounts(self):
        policy = parse_policy(
            SOURCE,
            {SINGLE_RIDE_PRICE: _result(SINGLE_RIDE_PRICE, "Unlock for $1, then a single ride is $3.30 per ride.")},
        )
        self.assertEqual(policy.amount(SINGLE_RIDE_PRICE), pytest.approx(3.30))

    def test_per_minute_metric_uses_sentence_citation(self):
        policy = parse_policy(
            SOURCE,
            {
                MEMBER_EBIKE_PER_MINUTE: _result(
                    MEMBER_EBIKE_PER_MINUTE,
                    "Join today. Member e-bike rides cost $0.17 per minute.",
                )
            },
        )
        self.assertEqual(policy.amount(MEMBER_EBIKE_PER_MINUTE), 0.17)
        self.assertEqual(policy.citations[0].text, "Member e-bike rides cost $0.17 per minute.")

    def test_shared_snippet_is_cited_once(self):
        text = "Members pay $17 monthly and $0.17 per minute on e-bikes."
        policy = parse_policy(
            SOURCE,
            {
                MEMBERSHIP_PRICE: _result(MEMBERSHIP_PRICE, text),
                MEMBER_EBIKE_PER_MINUTE: _result(MEMBER_EBIKE_PER_MINUTE, text),
            },
        )
        self.assertEqual(len(policy.citations), 1)
        self.assertEqual(policy.citation_for(MEMBERSHIP_PRICE), policy.citation_for(MEMBER_EBIKE_PER_MINUTE))


if __name__ == "__main__":
    unittest.main()
