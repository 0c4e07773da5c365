"""Presenter image + object compositing pipeline."""
