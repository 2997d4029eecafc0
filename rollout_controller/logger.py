import logging

LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'


def setup_logging(level="INFO"):
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO),
                        format=LOG_FORMAT)
    # httpx logs every request at INFO, which drowns out probe attempts
    logging.getLogger("httpx").setLevel(logging.WARNING)


def get_logger(name="rollout_controller"):
    return logging.getLogger(f"rollout_controller.{name}")
