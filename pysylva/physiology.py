"""
Leaf-level physiology (pure functions of a Species and ambient conditions).

- leaf_assimilation: Farquhar-von Caemmerer-Berry net assimilation with
  Medlyn-type ci/ca, temperature-corrected kinetics (Bernacchi et al. 2003,
  von Caemmerer 2000). Returns (A, rday) so the day-respiration term travels
  as an explicit value.
- daily_averaged_assimilation: the same averaged over a 24-sample diurnal curve;
  samples darker than DAILY_LIGHT_THRESHOLD contribute neither A nor rday.
- death_rate: per-timestep mortality probability with either a negative
  density dependence term or a carbon-starvation term.

Units: PPFD in micromol m^-2 s^-1, VPD in kPa, T in C, A and rday in
micromol C m^-2 s^-1.
"""

from __future__ import annotations

import math

from . import constants as const
from .config import ForestPolicy, GlobalParams
from .species import Species


def _vc_factor(T: float) -> float:
    return (T - 25.0) / (298.0 * const.R_KJ * (273.0 + T))


def leaf_respiration_factor(T: float) -> float:
    """Atkin et al. (2015) temperature dependence of leaf dark respiration."""
    return math.exp((T - 25.0) * 0.1 * math.log(3.09 - 0.0215 * (25.0 + T)))


def stem_respiration_factor(T: float) -> float:
    """Q10 = 2 around 25 C."""
    return math.exp((T - 25.0) / 10.0 * math.log(2.0))


def leaf_assimilation(
    sp: Species, PPFD: float, VPD: float, T: float, Cair: float, alpha: float
) -> tuple[float, float]:
    vcf = _vc_factor(T)
    den_tb = 1.0 / (const.R_KJ * (T + 273.15))
    KmT = const.KC25 * math.exp(vcf * 59.36) * (1.0 + const.O2 / const.KO25 * math.exp(-vcf * 35.94)) / Cair
    GammaT = const.GAMMA25 * math.exp(vcf * 23.4) / Cair
    VcmaxT = sp.Vcmax * math.exp(26.35 - 65.33 * den_tb)
    JmaxT = sp.Jmax * math.exp(17.57 - 43.54 * den_tb)
    rday = sp.Rdark * leaf_respiration_factor(T)

    fci = sp.g1 / (sp.g1 + math.sqrt(max(0.0, VPD)))
    theta = const.THETA
    I = alpha * PPFD
    J = (I + JmaxT - math.sqrt((JmaxT + I) * (JmaxT + I) - 4.0 * theta * JmaxT * I)) * 0.5 / theta
    A = min(VcmaxT / (fci + KmT), 0.25 * J / (fci + 2.0 * GammaT)) * (fci - GammaT)
    return A, rday


def daily_averaged_assimilation(
    sp: Species, PPFD: float, VPD: float, T: float, gp: GlobalParams
) -> tuple[float, float]:
    A = 0.0
    rday = 0.0
    alpha = gp.alpha
    for light, vpd, temp in zip(gp.daily_light, gp.daily_vpd, gp.daily_T):
        ppfd = PPFD * light
        if ppfd <= const.DAILY_LIGHT_THRESHOLD:
            continue
        a, r = leaf_assimilation(sp, ppfd, VPD * vpd, T * temp, gp.Cair, alpha)
        A += a
        rday += r
    n = float(len(gp.daily_light))
    return A / n, rday / n


def assimilation(
    sp: Species, PPFD: float, VPD: float, T: float, gp: GlobalParams, policy: ForestPolicy
) -> tuple[float, float]:
    """Dispatch on the daily-light policy."""
    if policy.daily_light:
        return daily_averaged_assimilation(sp, PPFD, VPD, T, gp)
    return leaf_assimilation(sp, PPFD, VPD, T, gp.Cair, gp.alpha)


def death_rate(
    sp: Species,
    PPFD: float,
    dbh: float,
    pressure: float,
    *,
    policy: ForestPolicy,
    gp: GlobalParams,
    timestep: float,
) -> float:
    """
    Mortality probability for one timestep.

    pressure is the conspecific NDD index when policy.ndd is set, otherwise the
    number of consecutive steps with negative NPP. PPFD is accepted for the
    light-limited variants and is not used by either current formula.
    """
    if policy.ndd:
        basal = 0.001 + gp.m * (1.0 - sp.wsg / 0.85)
        # equals 0 at 0.3*dmax and grows towards small stems
        add = 2.0 / (0.01 - 0.3 * sp.dmax)
        bdd = -add * 0.3 * sp.dmax
        dr = basal
        if dbh < 0.3 * sp.dmax:
            dr += pressure * (add * dbh + bdd)
    else:
        dr = gp.m - gp.m1 * sp.wsg
        if pressure > sp.leaflifespan:
            dr += 1.0 / timestep
    return dr * timestep
