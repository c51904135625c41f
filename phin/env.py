import os


def debug_enabled(env=None) -> bool:
    # Any non-empty PHIN_DEBUG turns on edge/input/output dumps
    env = os.environ if env is None else env
    return bool(str(env.get("PHIN_DEBUG", "")).strip())
