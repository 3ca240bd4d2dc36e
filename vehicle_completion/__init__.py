"""
Vehicle Data Completion Orchestrator

Fills persisted vehicle records with normalized specification, running-cost,
MOT, ownership and valuation data from the CheckCarDetails provider.
"""

__version__ = "2.0.0"
