# pysylva/constants.py

"""
Fixed model constants for the forest engine.

Values that the literature fits once and the model never tunes live here;
everything that a run may reasonably change lives in pysylva.config.
"""

import math

# --- Geometry ---
PI = math.pi
TWO_PI = 2.0 * math.pi

# --- Unit conversions ---
# micromol C m^-2 s^-1 -> gC m^-2 per year over 12 light hours: 12*3600*365.25*12/1e6
GPP_TO_G_PER_YEAR = 189.3
# same conversion over 24 hours, used for stem respiration
RSTEM_TO_G_PER_YEAR = 378.7
# W m^-2 -> micromol PAR m^-2 s^-1
IRRADIANCE_TO_PAR = 1.678

# --- Photosynthesis (Farquhar-von Caemmerer-Berry) ---
THETA = 0.7  # curvature of the light response of electron transport
DAILY_LIGHT_THRESHOLD = 0.1  # diurnal samples below this PPFD neither assimilate nor respire
KC25 = 404.0  # Michaelis constant for CO2 at 25 C (micromol/mol)
KO25 = 248.0  # Michaelis constant for O2 at 25 C (mmol/mol)
O2 = 210.0  # ambient O2 (mmol/mol)
GAMMA25 = 37.0  # CO2 compensation point at 25 C (micromol/mol)
R_KJ = 0.00831  # gas constant (kJ mol^-1 K^-1)

# --- Respiration / allocation ---
GROWTH_RESPIRATION = 0.75  # NPP retained after growth respiration
LEAF_ROOT_FACTOR = 1.5  # leaf respiration inflated for fine roots
STEM_ROOT_FACTOR = 1.5  # stem respiration inflated for coarse roots and branches
DAY_RESPIRATION_FRACTION = 0.40  # light inhibition of day respiration
STEM_RESPIRATION_RATE = 39.6  # sapwood respiration (micromol C m^-3 s^-1)
SAPWOOD_THICKNESS = 0.04  # m, halved dbh below 0.08 m
LEAF_FRACTION_OF_CANOPY = 0.68
SEED_FRACTION_OF_CANOPY = 0.08
SEEDMASS_DRY_FRACTION = 0.4

# --- Microclimate under the canopy ---
VPD_LAI_SLOPE = 0.08035714
TEMPERATURE_LAI_SLOPE = 0.4285714  # 3 C over 7 units of LAI
LAI_SATURATION = 7.0

# --- Density dependence ---
NDD_RADIUS = 15  # cells
NDD_GERMINATION_SCALE = 10000.0

# --- Diurnal curves (24 half-hour samples over 12 light hours) ---
# Normalised so that the peak is 1; the temperature curve keeps a floor close to
# the night-to-day ratio of a humid tropical site.
DAILY_LIGHT = tuple(round(math.sin(PI * (i + 0.5) / 24.0), 4) for i in range(24))
DAILY_VPD = tuple(round(0.35 + 0.65 * math.sin(PI * (i + 0.5) / 24.0) ** 1.5, 4) for i in range(24))
DAILY_T = tuple(round(0.86 + 0.14 * math.sin(PI * (i + 0.5) / 24.0), 4) for i in range(24))
DIURNAL_SAMPLES = 24
