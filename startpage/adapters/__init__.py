"""Adapters for services outside the device."""
