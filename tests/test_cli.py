import pytest

from pool_health import cli
from pool_health.exceptions import CursorPersistError, CycleInProgress


@pytest.fixture
def pipeline(mocker):
    mocker.patch.object(cli, "setup_logger")
    fake = mocker.Mock()
    build = mocker.patch.object(cli, "build_pipeline", return_value=fake)
    fake.build = build
    return fake


def test_once_runs_a_single_cycle(pipeline):
    assert cli.main(["--once", "--batch-size", "5", "--profile", "v1-simple", "--data-dir", "/tmp/ph"]) == 0
    pipeline.run_cycle.assert_called_once_with()
    _, kwargs = pipeline.build.call_args
    assert kwargs == {"data_dir": "/tmp/ph", "batch_size": 5, "profile": "v1-simple"}


def test_cursor_failure_exits_nonzero(pipeline):
    pipeline.run_cycle.side_effect = CursorPersistError("disk full")
    assert cli.main(["--once"]) == 1


def test_busy_pipeline_is_not_an_error(pipeline):
    pipeline.run_cycle.side_effect = CycleInProgress("busy")
    assert cli.main(["--once"]) == 0


def test_loop_sleeps_between_cycles(pipeline, mocker):
    sleep = mocker.patch.object(cli.time, "sleep", side_effect=[None, KeyboardInterrupt])
    with pytest.raises(KeyboardInterrupt):
        cli.main(["--interval", "60"])
    assert pipeline.run_cycle.call_count == 2
    sleep.assert_called_with(60)


@pytest.mark.parametrize("flag", ["--batch-size", "--interval"])
@pytest.mark.parametrize("value", ["0", "-3", "many"])
def test_non_positive_numbers_are_rejected(pipeline, flag, value):
    with pytest.raises(SystemExit) as exc:
        cli.main(["--once", flag, value])
    assert exc.value.code == 2
    pipeline.build.assert_not_called()


def test_loop_survives_unexpected_cycle_errors(pipeline, mocker):
    pipeline.run_cycle.side_effect = [TypeError("bad cached catalog row"), None, KeyboardInterrupt]
    logged = mocker.patch.object(cli.LOGGER, "exception")
    mocker.patch.object(cli.time, "sleep")
    with pytest.raises(KeyboardInterrupt):
        cli.main(["--interval", "60"])
    assert pipeline.run_cycle.call_count == 3
    logged.assert_called_once()


def test_once_mode_still_raises_unexpected_errors(pipeline):
    pipeline.run_cycle.side_effect = TypeError("bad cached catalog row")
    with pytest.raises(TypeError):
        cli.main(["--once"])
