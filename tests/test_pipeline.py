"""End-to-end pipeline runs against in-memory fakes."""

import threading
from pathlib import Path

import pytest

from presenter_studio.config import REFERENCE_CANVAS, REFERENCE_PLACEMENT, OverlayStrategy, PlacementLimits
from presenter_studio.errors import JobCancelled, MissingInputError, ServiceError
from presenter_studio.models.job import Job
from presenter_studio.models.placement import Canvas, Tweak
from presenter_studio.models.review import Correction, ReviewVerdict
from presenter_studio.services.placement import accumulate, resolve

from .conftest import FakeGenerator, ScriptedReviewer, make_image


@pytest.fixture
def job(tmp_path, subject_image, object_image):
    return Job(
        job_id="ep-142",
        subject_path=subject_image,
        object_path=object_image,
        title="Markets wrap",
        topics=["quarterly earnings"],
        output_dir=tmp_path / "out",
    )


def placement_reject(dx, dy, scale):
    return ReviewVerdict(
        accept=False,
        reason="not where the reference has it",
        correction=Correction(dx=dx, dy=dy, scale_multiplier=scale),
    )


class TestWardrobeScenario:
    def test_retry_then_all_stages_run(self, make_pipeline, store, job, render_downloads):
        reviewer = ScriptedReviewer(wardrobe=[
            ReviewVerdict(
                accept=False,
                reason="studio changed",
                correction=Correction(revised_prompt="Keep the studio exactly as it is."),
            ),
        ])
        generator = FakeGenerator()

        result = make_pipeline(reviewer=reviewer, generator=generator).run(job)

        assert result.method == "wardrobe:generated@2+object:generated@1+composite:generated@1"
        assert store.keys("wardrobe", "candidate") == [
            "presenter-studio/ep-142/wardrobe/a01-candidate.png",
            "presenter-studio/ep-142/wardrobe/a02-candidate.png",
        ]
        assert "presenter-studio/ep-142/wardrobe/a01-candidate.png" in store.deleted
        assert "presenter-studio/ep-142/wardrobe/a02-candidate.png" not in store.deleted
        assert generator.requests[1].prompt == "Keep the studio exactly as it is."
        assert "quarterly earnings" in generator.requests[0].prompt
        assert result.local_path.exists()
        assert result.local_path.parent == job.output_dir

    def test_inputs_and_overlay_are_cleaned_up(self, make_pipeline, store, job, render_downloads):
        make_pipeline().run(job)

        deleted = set(store.deleted)
        assert "presenter-studio/ep-142/wardrobe/input-subject.png" in deleted
        assert "presenter-studio/ep-142/object/input-object.png" in deleted
        assert any("/composite/overlay-" in key for key in deleted)

    def test_work_dir_removed(self, make_pipeline, job, base_config, render_downloads):
        make_pipeline().run(job)
        assert list(Path(base_config.work_root).iterdir()) == []


class TestCompositeScenario:
    def test_placement_follows_accumulated_corrections(self, make_pipeline, job, render_downloads):
        corrections = [(20, -10, 1.1), (15, 5, 1.05), (-5, 8, 0.95), (10, 0, 1.02)]
        reviewer = ScriptedReviewer(placement=[placement_reject(*c) for c in corrections])
        pipeline = make_pipeline(reviewer=reviewer)

        result = pipeline.run(job)

        limits = PlacementLimits()
        tweak = Tweak()
        for dx, dy, scale in corrections:
            tweak = accumulate(tweak, Correction(dx=dx, dy=dy, scale_multiplier=scale), limits)
        expected = resolve(REFERENCE_PLACEMENT, REFERENCE_CANVAS, Canvas(320, 180), tweak, min_edge=limits.min_edge)

        assert result.stage("composite").label == "composite:generated@5"
        assert result.placement == expected
        layers, modifications = pipeline.renderer.submitted[-1]
        assert layers["overlay"]["position_x"] == expected.x
        assert layers["overlay"]["width"] == expected.width
        assert modifications == {"width": 320, "height": 180, "image_format": "png"}
        assert len(render_downloads) == 5

    def test_strict_placement_falls_back_to_base(self, make_pipeline, store, job, render_downloads):
        reviewer = ScriptedReviewer(placement=[placement_reject(5, 5, 1.0)] * 5)

        result = make_pipeline(reviewer=reviewer).run(job)

        composite = result.stage("composite")
        assert composite.label == "composite:fallback(omit_overlay)"
        assert composite.asset is result.stage("wardrobe").asset
        assert all(key in store.deleted for key in store.keys("composite", "candidate"))

    def test_lenient_placement_keeps_best_effort(self, make_pipeline, job, render_downloads):
        reviewer = ScriptedReviewer(placement=[placement_reject(5, 5, 1.0)] * 5)

        result = make_pipeline(reviewer=reviewer, strict_placement=False).run(job)

        assert result.stage("composite").label == "composite:best_effort@5"


class TestDegenerateScenario:
    def test_unreachable_generation_reuses_input(self, make_pipeline, store, job, render_downloads):
        generator = FakeGenerator(error=ServiceError("connection refused"))

        result = make_pipeline(generator=generator).run(job)

        wardrobe = result.stage("wardrobe")
        assert wardrobe.label == "wardrobe:fallback(reuse_input)"
        assert wardrobe.asset.storage_id == "presenter-studio/ep-142/wardrobe/input-subject.png"
        assert store.keys("wardrobe", "candidate") == []
        assert result.stage("object").label == "object:fallback(upload_raw)"
        assert result.stage("composite").accepted is True

    def test_generative_composite_fallback(self, make_pipeline, job, render_downloads):
        reviewer = ScriptedReviewer(placement=[placement_reject(5, 5, 1.0)] * 5)
        generator = FakeGenerator()

        result = make_pipeline(reviewer=reviewer, generator=generator, enable_generative_composite=True).run(job)

        assert result.stage("composite").label == "composite:fallback(generative_composite)"
        final_request = generator.requests[-1]
        assert [ref.tag for ref in final_request.references] == ["subject_ref", "object_ref"]


class TestStrategies:
    def test_provided_object_skips_generation(self, make_pipeline, job, render_downloads):
        generator = FakeGenerator()

        result = make_pipeline(generator=generator, overlay_strategy=OverlayStrategy.PROVIDED).run(job)

        assert result.stage("object").label == "object:provided"
        assert len(generator.requests) == 1  # wardrobe only

    def test_placement_reference_is_cropped_and_kept(self, make_pipeline, store, job, monkeypatch, render_downloads):
        def fake_reference(url, out_path, timeout=60):
            return make_image(Path(out_path), size=(1280, 720), seed=7)

        monkeypatch.setattr("presenter_studio.engine.pipeline.download_url", fake_reference)
        pipeline = make_pipeline(
            overlay_strategy=OverlayStrategy.PLACEMENT_REF,
            placement_reference_url="https://cdn.test/placement.png",
        )

        result = pipeline.run(job)

        assert result.stage("object").label == "object:placement_ref"
        assert result.stage("composite").accepted is True
        assert "references/presenter_with_object.png" not in store.deleted
        assert not any(key.startswith("references/") for key in store.uploaded)

    def test_placement_reference_requires_url(self, make_pipeline, job):
        from presenter_studio.errors import ConfigurationError

        pipeline = make_pipeline(overlay_strategy=OverlayStrategy.PLACEMENT_REF, placement_reference_url="")
        with pytest.raises(ConfigurationError):
            pipeline.run(job)


class TestJobBoundaries:
    def test_cancelled_job_discards_pending(self, make_pipeline, store, job):
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(JobCancelled):
            make_pipeline().run(job, cancel)

        assert sorted(store.deleted) == sorted(store.uploaded)

    def test_small_subject_rejected(self, make_pipeline, job, tmp_path):
        tiny = make_image(tmp_path / "tiny.png", size=(8, 8))
        job.subject_path = tiny
        with pytest.raises(MissingInputError, match="image_too_small"):
            make_pipeline().run(job)

    def test_missing_object_rejected_for_generated_strategy(self, make_pipeline, job):
        job.object_path = None
        with pytest.raises(MissingInputError):
            make_pipeline().run(job)

    def test_to_dict(self, make_pipeline, job, render_downloads):
        payload = make_pipeline().run(job).to_dict()
        assert payload["job_id"] == "ep-142"
        assert payload["url"].startswith("https://assets.test/")
        assert [s["stage"] for s in payload["stages"]] == ["wardrobe", "object", "composite"]
