"""Mapping of the MOVs to distortion index and objective difference grade.

Section 5 of ITU-R BS.1387. The network weights are the published ones and
must not be changed.
"""
from __future__ import annotations

import logging
import math
from typing import Final

import numpy as np
from numpy import ndarray

logger = logging.getLogger(__name__)

BASIC_AMIN: Final = np.array(
    [
        393.916656,
        361.965332,
        -24.045116,
        1.110661,
        -0.206623,
        0.074318,
        1.113683,
        0.950345,
        0.029985,
        0.000101,
        0.0,
    ]
)
BASIC_AMAX: Final = np.array(
    [
        921.0,
        881.131226,
        16.212030,
        107.137772,
        2.886017,
        13.933351,
        63.257874,
        1145.018555,
        14.819740,
        1.0,
        1.0,
    ]
)
BASIC_WX: Final = np.array(
    [
        [-0.502657, 0.436333, 1.219602],
        [4.307481, 3.246017, 1.123743],
        [4.984241, -2.211189, -0.192096],
        [0.051056, -1.762424, 4.331315],
        [2.321580, 1.789971, -0.754560],
        [-5.303901, -3.452257, -10.814982],
        [2.730991, -6.111805, 1.519223],
        [0.624950, -1.331523, -5.955151],
        [3.102889, 0.871260, -5.922878],
        [-1.051468, -0.939882, -0.142913],
        [-1.804679, -0.503610, -0.620456],
    ]
)
BASIC_WXB: Final = np.array([-2.518254, 0.654841, -2.207228])
BASIC_WY: Final = np.array([-3.817048, 4.107138, 4.629582])
BASIC_WYB: Final = -0.307594

ADVANCED_AMIN: Final = np.array([13.298751, 0.041073, -25.018791, 0.061560, 0.02452])
ADVANCED_AMAX: Final = np.array([2166.5, 13.24326, 13.46708, 10.226771, 14.224874])
ADVANCED_WX: Final = np.array(
    [
        [21.211773, -39.013052, -1.382553, -14.545348, -0.320899],
        [-8.981803, 19.956049, 0.935389, -1.686586, -3.238586],
        [1.633830, -2.877505, -7.442935, 5.606502, -1.783120],
        [6.103821, 19.587435, -0.240284, 1.088213, -0.511314],
        [11.556344, 3.892028, 9.720441, -3.287205, -11.031250],
    ]
)
ADVANCED_WXB: Final = np.array([1.330890, 2.686103, 2.096598, -1.327851, 3.087055])
ADVANCED_WY: Final = np.array([-4.696996, -3.289959, 7.004782, 6.651897, 4.009144])
ADVANCED_WYB: Final = -1.360308

ODG_MIN: Final = -3.98
ODG_MAX: Final = 0.22


def _calculate_di(
    movs: ndarray,
    amin: ndarray,
    amax: ndarray,
    wx: ndarray,
    wxb: ndarray,
    wy: ndarray,
    wyb: float,
    clamp_movs: bool,
) -> float:
    movs = np.asarray(movs, dtype=float)
    if movs.shape != amin.shape:
        logger.error(f"Expected {len(amin)} MOVs, got {movs.shape}")
        raise ValueError(f"Expected {len(amin)} MOVs, got {movs.size}")
    scaled = (movs - amin) / (amax - amin)
    if clamp_movs:
        scaled = np.clip(scaled, 0.0, 1.0)
    hidden = wxb + scaled @ wx
    return float(wyb + np.sum(wy / (1.0 + np.exp(-hidden))))


def calculate_di_basic(movs, clamp_movs: bool = True) -> float:
    """Distortion index from the 11 MOVs of the basic version.

    Args:
        movs (array_like): BandwidthRefB, BandwidthTestB, Total NMRB,
            WinModDiff1B, ADBB, EHSB, AvgModDiff1B, AvgModDiff2B,
            RmsNoiseLoudB, MFPDB and RelDistFramesB, in this order.
        clamp_movs (bool): clip the normalized MOVs to [0, 1] (default: True).

    Returns:
        float: the distortion index
    """
    return _calculate_di(
        movs,
        BASIC_AMIN,
        BASIC_AMAX,
        BASIC_WX,
        BASIC_WXB,
        BASIC_WY,
        BASIC_WYB,
        clamp_movs,
    )


def calculate_di_advanced(movs, clamp_movs: bool = True) -> float:
    """Distortion index from the 5 MOVs of the advanced version.

    Args:
        movs (array_like): RmsModDiffA, RmsNoiseLoudAsymA, Segmental NMRB,
            EHSB and AvgLinDistA, in this order.
        clamp_movs (bool): clip the normalized MOVs to [0, 1] (default: True).

    Returns:
        float: the distortion index
    """
    return _calculate_di(
        movs,
        ADVANCED_AMIN,
        ADVANCED_AMAX,
        ADVANCED_WX,
        ADVANCED_WXB,
        ADVANCED_WY,
        ADVANCED_WYB,
        clamp_movs,
    )


def calculate_odg(distortion_index: float) -> float:
    """Objective difference grade, between -3.98 and 0.22."""
    return ODG_MIN + (ODG_MAX - ODG_MIN) / (1.0 + math.exp(-distortion_index))
