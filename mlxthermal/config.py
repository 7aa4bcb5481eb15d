# Constants and defaults for the MLX90640 conversion pipeline.
# Imported by the library modules and the command-line program; CLI flags override the defaults.

# Buffer sizes
EE_DATA_BUFFER_SIZE = 832
RAW_FRAME_BUFFER_SIZE = 834
FRAME_WIDTH = 32
FRAME_HEIGHT = 24
FRAME_BUFFER_SIZE = FRAME_WIDTH * FRAME_HEIGHT

# Raw frame slots
FRAME_TA_VBE = 768
FRAME_CP_SUBPAGE_0 = 776
FRAME_GAIN = 778
FRAME_TA_PTAT = 800
FRAME_CP_SUBPAGE_1 = 808
FRAME_VDD_PIX = 810
FRAME_CONTROL_REGISTER = 832
FRAME_SUBPAGE = 833

# Control register 1 fields
CTRL_RESOLUTION_MASK = 0x0C00
CTRL_RESOLUTION_SHIFT = 10
CTRL_MEAS_MODE_MASK = 0x1000
CTRL_MEAS_MODE_SHIFT = 12

# Vendor algorithm constants
SCALEALPHA = 0.000001
KELVIN_OFFSET = 273.15
TA_REFERENCE = 25
VDD_REFERENCE = 3.3

# Reflected temperature is estimated as Ta minus this shift (sensor in open air)
TA_SHIFT = 8

# Emissivity prior used when no concrete value is given
EMISSIVITY_LOWER_BOUND = 0.93
EMISSIVITY_UPPER_BOUND = 0.97

# Deviating pixel limits
MAX_DEVIATING_PIXELS = 4

# Uncertainty substrate
DISTRIBUTION_SAMPLES = 1001
RANDOM_SEED = 42

# Command-line defaults
DEFAULT_EE_DATA_PATH = "EEPROM-calibration-data.csv"
DEFAULT_RAW_DATA_PATH = "raw-frame-data.csv"
DEFAULT_PIXEL = (FRAME_BUFFER_SIZE // 2) + (FRAME_WIDTH // 2)
