import pytest


@pytest.fixture
def cli_plancal(monkeypatch, make_plancal):
    """Point every command's ``Plancal()`` at the in-memory server.

    Each call builds a fresh instance over the same cache folders, like
    separate CLI invocations.
    """
    import plancal.commands.clear_cache
    import plancal.commands.move
    import plancal.commands.show_month
    import plancal.commands.status

    def factory():
        return make_plancal()

    for module in (
        plancal.commands.clear_cache,
        plancal.commands.move,
        plancal.commands.show_month,
        plancal.commands.status,
    ):
        monkeypatch.setattr(module, "Plancal", factory)
    return factory


@pytest.fixture
def march_plan(fake_transport, signed_in):
    fake_transport.etag = "v1"
    fake_transport.records = [
        {"workout_uuid": "r1", "date": "2025-03-10", "activity": "run", "name": "Easy run", "duration_minutes": 40},
        {"workout_uuid": "y2", "date": "2025-03-10", "activity": "yoga", "name": "Yoga"},
        {"workout_uuid": "X", "date": "2025-03-12", "activity": "sauna", "name": "Sauna", "layers": 3},
    ]
    return fake_transport
