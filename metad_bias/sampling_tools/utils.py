import numpy as np
from typing import Union


def diff(
    a: Union[np.ndarray, float],
    b: Union[np.ndarray, float],
    periodicity: list,
) -> Union[np.ndarray, float]:
    """get (periodic) difference of elements of numbers or arrays

    Args:
        a: number or array
        b: number or array
        periodicity: periodic boundary conditions [lower, upper], or None

    Returns:
        diff: element-wise minimum image difference (a-b)
    """
    diff_ab = np.subtract(a, b)
    if not periodicity:
        return diff_ab
    if len(periodicity) != 2:
        raise ValueError(" >>> Error: Invalid periodicity")

    period = periodicity[1] - periodicity[0]
    return diff_ab - period * np.floor(diff_ab / period + 0.5)


def correct_periodicity(
    x: Union[np.ndarray, float],
    periodicity: list,
) -> Union[np.ndarray, float]:
    """Wrap x to periodic range

    Args:
        x: float or array to correct
        periodicity: periodic boundary conditions ([lower, upper]),
                     if None, returns x

    Returns:
        x: x in periodic range defined by periodicity
    """
    if not periodicity:
        return x

    if len(periodicity) != 2:
        raise ValueError(" >>> Error: Invalid periodicity")

    period = periodicity[1] - periodicity[0]
    return periodicity[0] + np.mod(np.subtract(x, periodicity[0]), period)




def parse_bound(value: str) -> float:
    """domain boundaries in grid and hills files can be written as multiples of pi"""
    value = value.strip()
    if "pi" in value:
        prefac = value.replace("pi", "").replace("*", "")
        if prefac in ("", "+"):
            return np.pi
        if prefac == "-":
            return -np.pi
        return float(prefac) * np.pi
    return float(value)
