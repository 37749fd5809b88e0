"""Basic import tests to verify package structure."""


def test_import_datastream():
    import datastream
    assert datastream.__version__ == "0.1.0"


def test_import_engine():
    from datastream.game_engine import GameEngine, GameValidationError
    assert GameEngine is not None
    assert issubclass(GameValidationError, Exception)


def test_import_server():
    from datastream import server
    assert hasattr(server, "WebSocketServer")
