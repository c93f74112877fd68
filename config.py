# Configuration constants for the force plate analysis engine

# Sampling
SAMPLE_RATE = 1000  # Hz, nominal rate of the combined left/right stream
GRAVITY = 9.81 # m/s^2

# Stability / bodyweight detection
STABILITY_WINDOW_MS = 500 # Window used for the stand-still check
STABILITY_STD_THRESHOLD_N = 50.0 # Max std dev of total force while standing still
BODY_WEIGHT_WINDOW_MS = 1000 # Extended window averaged into the bodyweight estimate

# Movement onset
ONSET_THRESHOLD_N = 100.0 # Deviation from baseline that counts as movement
ONSET_CONFIRM_MS = 100 # Deviation must persist this long before onset is declared

# Test type classification
CLASSIFIER_MIN_SAMPLES = 1000 # ~1s at 1kHz
CLASSIFIER_CONFIDENCE_THRESHOLD = 0.70
FLIGHT_FORCE_FACTOR = 0.1 # Samples below 10% BW count as airborne
MIN_FLIGHT_MS = 50 # Less than this is treated as no flight at all
COUNTERMOVEMENT_FACTOR = 0.9 # Dip below 90% BW in the first quarter of a window

# Event detection (multiples of bodyweight)
TAKEOFF_THRESHOLD_BW = 0.1
LANDING_THRESHOLD_BW = 0.5
FORCE_ONSET_THRESHOLD_BW = 1.05 # Isometric pull onset

# Metrics
RFD_WINDOW_MS = 50
ISOMETRIC_RFD_WINDOWS_MS = ((0, 50), (0, 100), (0, 150), (0, 200), (50, 100), (100, 200))
ISOMETRIC_FORCE_TIMES_MS = (50, 100, 150, 200)
ISOMETRIC_IMPULSE_TIMES_MS = (100, 200)

# Filtering
FILTER_ORDER = 4
FILTER_CUTOFF = 50 # Hz - Low-pass filter cutoff for force data (clamped below Nyquist in processing)
APPLY_LOWPASS_FILTER = True # Low-pass recorded trials before metrics

# Buffer Settings
CONTINUOUS_BUFFER_SECONDS = 10  # Size of circular buffer for continuous acquisition (seconds)
TIMING_JITTER_THRESHOLD_MS = 5.0  # Threshold for detecting timing jitter (milliseconds)
TIMING_GAP_FACTOR = 1.5 # Interval > 1.5x nominal is reported as a gap
POST_LANDING_CAPTURE_MS = 1000 # Keep recording this long after landing before closing a trial
PRE_ONSET_CAPTURE_MS = 1000 # Quiet stance kept ahead of the detected onset
MAX_TRIAL_SECONDS = 8 # Hard cap on a single captured trial
TRIAL_HISTORY_SIZE = 10 # Earlier phase results kept per test type for threshold re-tuning
MAX_KEPT_TRIALS = 10 # Completed trial analyses retained by the ingestion facade

# Real-time session
SMOOTHING_WINDOW = 10 # Samples in the live moving average
PHASE_WINDOW = 50 # Samples of history handed to the phase machine
ANALYSIS_INTERVAL_MS = 100 # Phase/metrics re-evaluation cadence
FEEDBACK_INTERVAL_MS = 50 # Feedback message cadence
METRICS_WINDOW_SECONDS = 3 # Most recent data used for the live metrics snapshot
SNAPSHOT_HISTORY_SIZE = 100 # Recent snapshots kept by a live session (10 s at the analysis cadence)
PHASE_TRANSITION_HISTORY = 50 # Upper bound on the live phase transition log

# Signal quality
MIN_PLAUSIBLE_FORCE_N = 50.0
MAX_PLAUSIBLE_FORCE_N = 5000.0
QUALITY_ASYMMETRY_CEILING = 0.30
ASYMMETRY_WARNING_THRESHOLD = 0.25
NOISE_CEILING_N = 50.0 # Mean absolute sample-to-sample difference
LOW_SIGNAL_STD_N = 0.1 # Flat-line detection on the smoothed trace
PERSISTENT_ASYMMETRY_COUNT = 5
SIGNAL_QUALITY_THRESHOLD = 0.8 # Below this the sample stream is flagged
