"""Prompt orchestration."""

from unittest.mock import MagicMock

import pytest

from presenter_studio.errors import ServiceError
from presenter_studio.models.job import Job
from presenter_studio.services.prompts import WARDROBE_VARIANTS, PromptService, pick_wardrobe_variant


@pytest.fixture
def job():
    return Job(job_id="ep-7", subject_path="s.png", object_path="o.png", title="Cozy picks", topics=["candles"])


class TestPrompts:
    def test_variant_is_stable_per_job(self):
        assert pick_wardrobe_variant("ep-7") == pick_wardrobe_variant("ep-7")
        assert pick_wardrobe_variant("ep-7") in WARDROBE_VARIANTS

    def test_variants_spread_across_jobs(self):
        picks = {pick_wardrobe_variant(f"job-{i}") for i in range(50)}
        assert len(picks) > 3

    def test_templates_without_llm(self, job):
        prompts = PromptService(None, object_label="candle").build(job)
        assert prompts.source == "template"
        assert prompts.wardrobe_variant in prompts.wardrobe
        assert "Cozy picks | candles" in prompts.wardrobe
        assert "candle" in prompts.object
        assert "@subject_ref" in prompts.final

    def test_llm_prompts(self, job):
        llm = MagicMock()
        llm.call.return_value = '{"wardrobePrompt": "w", "objectPrompt": "o", "finalPrompt": "f"}'

        prompts = PromptService(llm, reference_urls=["https://a.test/1.png", ""]).build(job)

        assert (prompts.wardrobe, prompts.object, prompts.final, prompts.source) == ("w", "o", "f", "llm")
        assert llm.call.call_args.kwargs["image_urls"] == ["https://a.test/1.png"]

    @pytest.mark.parametrize("reply", [
        '{"wardrobePrompt": "w", "objectPrompt": "o"}',
        "sorry, no JSON today",
    ])
    def test_bad_llm_reply_uses_templates(self, job, reply):
        llm = MagicMock()
        llm.call.return_value = reply
        assert PromptService(llm).build(job).source == "template"

    def test_llm_failure_uses_templates(self, job):
        llm = MagicMock()
        llm.call.side_effect = ServiceError("rate limited", status_code=429)
        assert PromptService(llm).build(job).source == "template"
