import logging, sys

def configure(level: str = "info"):
    lvl = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=lvl,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stdout,
    )
    # uvicorn access lines duplicate the request counters on /metrics
    for name in ["uvicorn.access"]:
        logging.getLogger(name).setLevel(logging.WARNING)
    return logging.getLogger("recovery-engine")
