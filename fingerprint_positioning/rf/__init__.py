"""
RF propagation module.

Submodules:
    propagation: log-distance received power model and its derivatives
"""

from fingerprint_positioning.rf.propagation import (
    DEFAULT_FREQUENCY,
    DEFAULT_PATH_LOSS_EXPONENT,
    SPEED_OF_LIGHT,
    dbm_to_mw,
    distance_from_received_power_dbm,
    mw_to_dbm,
    path_loss_constant,
    received_power,
    received_power_dbm,
    received_power_derivatives,
    received_power_partials,
)

__all__ = [
    # Constants
    "SPEED_OF_LIGHT",
    "DEFAULT_FREQUENCY",
    "DEFAULT_PATH_LOSS_EXPONENT",
    # Unit conversion
    "dbm_to_mw",
    "mw_to_dbm",
    # Propagation model
    "path_loss_constant",
    "received_power",
    "received_power_dbm",
    "distance_from_received_power_dbm",
    # Derivatives
    "received_power_partials",
    "received_power_derivatives",
]
