import pathlib as pl
import time
import typing as tp

# Short enough to keep failing tests fast, long enough for a slow CI machine
START_TIMEOUT = 20


def get_heartbeat(node_dir: pl.Path) -> int:
    """Return number of main loop iterations of the fake node."""
    heartbeat_file = node_dir / "heartbeat"
    for __ in range(20):
        try:
            content = heartbeat_file.read_text().strip()
        except FileNotFoundError:
            content = ""
        if content:
            return int(content)
        # The file is rewritten on every iteration, it can be read mid-write
        time.sleep(0.05)
    return 0


def wait_for_heartbeat_change(node_dir: pl.Path, timeout: float = 5) -> bool:
    start = get_heartbeat(node_dir)
    end_time = time.monotonic() + timeout
    while time.monotonic() < end_time:
        if get_heartbeat(node_dir) != start:
            return True
        time.sleep(0.1)
    return False


def hypothesis_settings(max_examples: int = 100) -> tp.Any:
    import hypothesis

    return hypothesis.settings(
        max_examples=max_examples,
        deadline=None,
        suppress_health_check=(
            hypothesis.HealthCheck.too_slow,
            hypothesis.HealthCheck.function_scoped_fixture,
        ),
    )
