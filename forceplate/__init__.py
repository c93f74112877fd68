"""
Force plate signal processing and statistics engine.

This package contains the analysis pipeline:
- samples.py: ForceSample / ForceTrial value types
- buffer_manager.py: Memory-bounded circular sample buffer
- calibration_manager.py: Stand-still and bodyweight detection
- onset_detector.py: Debounced movement onset detection
- signal_filters.py: Moving averages and Butterworth low-pass
- movement_classifier.py: Automatic test type detection
- thresholds.py: Per-test phase thresholds and athlete adaptation
- phase_detector.py: Jump phase state machine and batch segmentation
- metrics_calculator.py: Post-trial metrics
- descriptive.py, reliability.py, inference.py: Cross-session statistics
- trial_analyzer.py: Batch analysis of one recorded trial
- data_processor.py: Ingestion facade (buffer, bodyweight, onset, capture)
- realtime_analyzer.py: Live session orchestration and feedback
"""
import logging

import config


def configure_logging(level=logging.INFO, filename=None):
    """Set up root logging the way the host application does."""
    logging.basicConfig(
        filename=filename,
        level=level,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )


def validate_config():
    """
    Check the tuning constants for values the engine cannot work with.

    Returns:
        list: Error messages, empty when the configuration is usable
    """
    errors = []
    if config.SAMPLE_RATE <= 0:
        errors.append("SAMPLE_RATE must be positive.")
    if config.STABILITY_WINDOW_MS <= 0:
        errors.append("STABILITY_WINDOW_MS must be positive.")
    if config.BODY_WEIGHT_WINDOW_MS < config.STABILITY_WINDOW_MS:
        errors.append("BODY_WEIGHT_WINDOW_MS must not be shorter than STABILITY_WINDOW_MS.")
    if config.ONSET_CONFIRM_MS < 0:
        errors.append("ONSET_CONFIRM_MS must not be negative.")
    if not 0 < config.CLASSIFIER_CONFIDENCE_THRESHOLD < 1:
        errors.append("CLASSIFIER_CONFIDENCE_THRESHOLD must be between 0 and 1.")
    if config.TAKEOFF_THRESHOLD_BW >= config.LANDING_THRESHOLD_BW:
        errors.append("TAKEOFF_THRESHOLD_BW must be below LANDING_THRESHOLD_BW.")
    if config.ANALYSIS_INTERVAL_MS <= 0 or config.FEEDBACK_INTERVAL_MS <= 0:
        errors.append("ANALYSIS_INTERVAL_MS and FEEDBACK_INTERVAL_MS must be positive.")
    if config.CONTINUOUS_BUFFER_SECONDS < config.MAX_TRIAL_SECONDS + config.PRE_ONSET_CAPTURE_MS / 1000.0:
        errors.append("CONTINUOUS_BUFFER_SECONDS cannot hold a full trial.")
    if errors:
        logging.getLogger(__name__).error("Configuration validation failed: %s", "; ".join(errors))
    return errors
