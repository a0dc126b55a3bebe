"""
Test suite для escrow-компонентов POWER.HORSE

Contains:
- tests/unit/          : Unit tests (domain, core, adapters, managers)
- tests/conftest.py    : Общие fixtures и ScriptedPricing
"""
