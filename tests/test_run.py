import importlib
import sys

import shelfmark


def test_main_passes_command_line_options_to_the_server(app, monkeypatch):
    monkeypatch.setattr(shelfmark, "create_app", lambda: app)
    monkeypatch.delitem(sys.modules, "run", raising=False)
    monkeypatch.delenv("SHELFMARK_HOST", raising=False)
    run = importlib.import_module("run")
    calls = {}
    monkeypatch.setattr(app, "run", lambda **kwargs: calls.update(kwargs))

    run.main(["--port", "9001", "--debug"])

    assert run.app is app
    assert calls == {"host": "127.0.0.1", "port": 9001, "debug": True}
