import logging
import os

logger = logging.getLogger(__name__)

_TF_CONFIGURED = False


def configure_tensorflow() -> bool:
    """
    Configure TensorFlow once per process: CPU only, deterministic ops.
    Returns True the first time the configuration is applied.
    """
    global _TF_CONFIGURED
    if _TF_CONFIGURED:
        return False
    _TF_CONFIGURED = True

    os.environ.setdefault("TF_CPP_MIN_LOG_LEVEL", "2")
    import tensorflow as tf

    try:
        tf.config.set_visible_devices([], "GPU")
    except (RuntimeError, ValueError) as exc:
        # Raised once the runtime is initialised; device placement is then fixed.
        logger.info(f"TensorFlow devices already initialised; keeping placement: {exc}")

    try:
        tf.config.experimental.enable_op_determinism()
    except AttributeError:
        logger.info("TensorFlow op determinism not available in this version.")

    logger.info("TensorFlow configured for CPU execution.")
    return True


def seed_everything(seed: int):
    """Seed Python, NumPy and TensorFlow global generators."""
    import tensorflow as tf
    tf.keras.utils.set_random_seed(int(seed))
