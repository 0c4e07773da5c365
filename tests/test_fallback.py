"""Fallback chain resolver."""

import pytest

from presenter_studio.errors import FallbackExhausted, FallbackUnavailable, ServiceError
from presenter_studio.models.asset import AssetKind
from presenter_studio.services.assets import AssetLifecycleManager
from presenter_studio.services.fallback import FallbackChainResolver, FallbackContext, list_strategies

from .conftest import make_image


@pytest.fixture
def assets(store):
    return AssetLifecycleManager(store, "job-1")


class TestTable:
    def test_default_chains(self):
        resolver = FallbackChainResolver.default()
        assert resolver.chain("wardrobe") == ("reuse_input",)
        assert resolver.chain("object") == ("upload_raw",)
        assert resolver.chain("composite") == ("omit_overlay",)

    def test_generative_composite_goes_first_when_enabled(self):
        resolver = FallbackChainResolver.default(enable_generative_composite=True)
        assert resolver.chain("composite") == ("generative_composite", "omit_overlay")

    def test_unknown_strategy_rejected(self):
        with pytest.raises(ValueError):
            FallbackChainResolver({"wardrobe": ("reuse_inptu",)})

    def test_builtin_strategies_registered(self):
        assert {"reuse_input", "upload_raw", "omit_overlay", "generative_composite"} <= set(list_strategies())


class TestResolve:
    def test_reuse_input(self, assets, subject_image):
        subject = assets.register(subject_image, "wardrobe", kind=AssetKind.INPUT)
        ctx = FallbackContext("job-1", "wardrobe", assets, input_asset=subject)

        asset, name = FallbackChainResolver.default().resolve(ctx)

        assert asset is subject
        assert name == "reuse_input"

    def test_upload_raw_registers_fallback_asset(self, assets, object_image):
        ctx = FallbackContext("job-1", "object", assets, raw_path=object_image)

        asset, name = FallbackChainResolver.default().resolve(ctx)

        assert name == "upload_raw"
        assert asset.kind == AssetKind.FALLBACK
        assert asset.stage == "object"

    def test_failed_strategy_falls_through(self, assets, subject_image):
        prior = assets.register(subject_image, "wardrobe", 1)

        def generate():
            raise ServiceError("generator down")

        ctx = FallbackContext("job-1", "composite", assets, prior_asset=prior, generate=generate)
        asset, name = FallbackChainResolver.default(enable_generative_composite=True).resolve(ctx)

        assert name == "omit_overlay"
        assert asset is prior

    def test_generative_composite_used_when_it_works(self, assets, tmp_path):
        generated = make_image(tmp_path / "gen.png")
        ctx = FallbackContext(
            "job-1",
            "composite",
            assets,
            generate=lambda: assets.register(generated, "composite", kind=AssetKind.FALLBACK, name="generative"),
        )
        asset, name = FallbackChainResolver.default(enable_generative_composite=True).resolve(ctx)
        assert name == "generative_composite"
        assert asset.storage_id.endswith("/composite/generative.png")

    def test_exhausted(self, assets):
        ctx = FallbackContext("job-1", "wardrobe", assets)
        with pytest.raises(FallbackExhausted):
            FallbackChainResolver.default().resolve(ctx)

    def test_unknown_stage_has_empty_chain(self, assets):
        with pytest.raises(FallbackExhausted, match="empty chain"):
            FallbackChainResolver.default().resolve(FallbackContext("job-1", "thumbnail", assets))

    def test_strategy_signals_unavailable(self, assets):
        def generate():
            raise FallbackUnavailable("deadline passed")

        ctx = FallbackContext("job-1", "composite", assets, generate=generate)
        with pytest.raises(FallbackExhausted, match="deadline passed"):
            FallbackChainResolver.default(enable_generative_composite=True).resolve(ctx)
