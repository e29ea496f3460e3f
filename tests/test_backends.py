# tests/test_backends.py
"""Tests for model backends and the local model lifecycle."""

import pytest


class FakeEngine:
    """Stands in for llama_cpp.Llama."""

    def __init__(self, text="```python\nprint(1)\n```", **kwargs):
        self.init_kwargs = kwargs
        self.calls = []
        self.text = text

    def __call__(self, prompt, **kwargs):
        self.calls.append((prompt, kwargs))
        return {"choices": [{"text": self.text}]}


@pytest.fixture
def model_file(tmp_path):
    path = tmp_path / "tiny.gguf"
    path.write_bytes(b"GGUF")
    return path


class TestLocalModelManager:
    def test_not_ready_until_loaded(self, model_file):
        from holysheets.analyst.backends import LocalModelManager

        manager = LocalModelManager(model_file, engine_factory=FakeEngine)
        assert manager.is_downloaded()
        assert not manager.is_ready()

    def test_ensure_loaded_reports_progress(self, model_file):
        from holysheets.analyst.backends import LocalModelManager

        seen = []
        manager = LocalModelManager(model_file, n_threads=2, n_ctx=1024, engine_factory=FakeEngine)
        engine = manager.ensure_loaded(seen.append)
        assert seen == [10, 30, 50, 100]
        assert manager.is_ready()
        assert engine.init_kwargs["model_path"] == str(model_file)
        assert engine.init_kwargs["n_threads"] == 2
        assert engine.init_kwargs["n_ctx"] == 1024

    def test_ensure_loaded_is_idempotent(self, model_file):
        from holysheets.analyst.backends import LocalModelManager

        manager = LocalModelManager(model_file, engine_factory=FakeEngine)
        first = manager.ensure_loaded()
        assert manager.ensure_loaded() is first

    def test_missing_file(self, tmp_path):
        from holysheets.analyst.backends import LocalModelManager
        from holysheets.analyst.errors import ModelNotDownloadedError

        seen = []
        manager = LocalModelManager(tmp_path / "missing.gguf", engine_factory=FakeEngine)
        with pytest.raises(ModelNotDownloadedError):
            manager.ensure_loaded(seen.append)
        assert seen == [10]
        assert not manager.is_ready()

    def test_unload(self, model_file):
        from holysheets.analyst.backends import LocalModelManager

        manager = LocalModelManager(model_file, engine_factory=FakeEngine)
        manager.ensure_loaded()
        manager.unload()
        assert not manager.is_ready()


class TestLocalBackend:
    def test_not_ready_is_a_hard_failure(self, model_file):
        from holysheets.analyst.backends import LocalBackend, LocalModelManager
        from holysheets.analyst.errors import GenerationError

        calls = []

        def factory(**kwargs):
            calls.append(kwargs)
            return FakeEngine()

        backend = LocalBackend(LocalModelManager(model_file, engine_factory=factory))
        with pytest.raises(GenerationError) as excinfo:
            backend.generate("total sales")
        assert excinfo.value.reason == "not_ready"
        assert calls == []

    def test_chatml_template(self, model_file):
        from holysheets.analyst.backends import LocalBackend, LocalModelManager
        from holysheets.analyst.prompts import SYSTEM_ROLE

        manager = LocalModelManager(model_file, engine_factory=FakeEngine)
        manager.ensure_loaded()
        backend = LocalBackend(manager, template="chatml", max_tokens=256, temperature=0.0)

        assert backend.generate("total sales") == "```python\nprint(1)\n```"
        prompt, kwargs = manager.engine.calls[0]
        assert prompt == (
            f"<|im_start|>system\n{SYSTEM_ROLE}<|im_end|>\n"
            "<|im_start|>user\ntotal sales<|im_end|>\n"
            "<|im_start|>assistant\n"
        )
        assert kwargs["max_tokens"] == 256
        assert kwargs["temperature"] == 0.0
        assert "<|im_end|>" in kwargs["stop"]
        assert kwargs["echo"] is False

    def test_llama3_template(self, model_file):
        from holysheets.analyst.backends import LocalBackend, LocalModelManager

        manager = LocalModelManager(model_file, engine_factory=FakeEngine)
        manager.ensure_loaded()
        rendered = LocalBackend(manager, template="llama3").render("hello")
        assert rendered.startswith("<|begin_of_text|><|start_header_id|>system<|end_header_id|>")
        assert "<|start_header_id|>user<|end_header_id|>\n\nhello<|eot_id|>" in rendered
        assert rendered.endswith("<|start_header_id|>assistant<|end_header_id|>\n\n")

    def test_unknown_template(self, model_file):
        from holysheets.analyst.backends import get_chat_template

        with pytest.raises(ValueError, match="Unknown chat template"):
            get_chat_template("alpaca")

    def test_malformed_engine_output(self, model_file):
        from holysheets.analyst.backends import LocalBackend, LocalModelManager
        from holysheets.analyst.errors import GenerationError

        manager = LocalModelManager(model_file, engine_factory=lambda **kw: (lambda prompt, **k: {"choices": []}))
        manager.ensure_loaded()
        with pytest.raises(GenerationError) as excinfo:
            LocalBackend(manager).generate("x")
        assert excinfo.value.reason == "malformed_response"

    def test_engine_crash(self, model_file):
        from holysheets.analyst.backends import LocalBackend, LocalModelManager
        from holysheets.analyst.errors import GenerationError

        def broken(prompt, **kwargs):
            raise RuntimeError("llama_decode returned -1")

        manager = LocalModelManager(model_file, engine_factory=lambda **kw: broken)
        manager.ensure_loaded()
        with pytest.raises(GenerationError) as excinfo:
            LocalBackend(manager).generate("x")
        assert excinfo.value.reason == "engine"


class TestLiteLLMBackend:
    def test_passes_system_and_user_messages(self):
        from holysheets.analyst.backends import LiteLLMBackend
        from holysheets.analyst.prompts import SYSTEM_ROLE

        seen = {}

        def fake_lm(messages):
            seen["messages"] = messages
            return ["print(1)"]

        backend = LiteLLMBackend("gemini/gemini-1.5-flash", lm=fake_lm)
        assert backend.generate("total") == "print(1)"
        assert seen["messages"] == [
            {"role": "system", "content": SYSTEM_ROLE},
            {"role": "user", "content": "total"},
        ]
        assert backend.name == "litellm:gemini/gemini-1.5-flash"

    def test_dict_outputs(self):
        from holysheets.analyst.backends import LiteLLMBackend

        backend = LiteLLMBackend("openai/gpt-4-turbo", lm=lambda messages: [{"text": "x = 1"}])
        assert backend.generate("p") == "x = 1"

    @pytest.mark.parametrize(
        "exc_name, reason",
        [("Timeout", "timeout"), ("RateLimitError", "quota"), ("AuthenticationError", "auth"), ("APIConnectionError", "transport")],
    )
    def test_errors_are_tagged(self, exc_name, reason):
        from holysheets.analyst.backends import LiteLLMBackend
        from holysheets.analyst.errors import GenerationError

        exc_type = type(exc_name, (Exception,), {})

        def failing(messages):
            raise exc_type("provider said no")

        with pytest.raises(GenerationError) as excinfo:
            LiteLLMBackend("groq/llama3-70b-8192", lm=failing).generate("p")
        assert excinfo.value.reason == reason
        assert "provider said no" in str(excinfo.value)

    def test_empty_reply_is_malformed(self):
        from holysheets.analyst.backends import LiteLLMBackend
        from holysheets.analyst.errors import GenerationError

        with pytest.raises(GenerationError) as excinfo:
            LiteLLMBackend("m", lm=lambda messages: [""]).generate("p")
        assert excinfo.value.reason == "malformed_response"


class TestOpenAICompatibleBackend:
    def test_chat_completion(self):
        from types import SimpleNamespace

        from holysheets.analyst.backends import OpenAICompatibleBackend

        calls = []

        def create(**kwargs):
            calls.append(kwargs)
            message = SimpleNamespace(content="<|channel|>final<|message|>print(2)")
            return SimpleNamespace(choices=[SimpleNamespace(message=message)])

        client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))
        backend = OpenAICompatibleBackend("qwen2.5-coder", client=client, max_tokens=512)
        assert backend.generate("p") == "print(2)"
        assert calls[0]["model"] == "qwen2.5-coder"
        assert calls[0]["max_tokens"] == 512
        assert calls[0]["messages"][1] == {"role": "user", "content": "p"}


class TestCustomEndpointBackend:
    def _client(self, handler):
        import httpx

        return httpx.Client(transport=httpx.MockTransport(handler))

    def test_posts_prompt_and_reads_text(self):
        import json

        import httpx

        from holysheets.analyst.backends import CustomEndpointBackend
        from holysheets.analyst.prompts import SYSTEM_ROLE

        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"text": "print(3)"})

        backend = CustomEndpointBackend("http://models.local/", client=self._client(handler))
        assert backend.generate("p") == "print(3)"
        assert seen["url"] == "http://models.local/generate"
        assert seen["body"] == {"prompt": "p", "systemPrompt": SYSTEM_ROLE}

    def test_reads_response_key(self):
        import httpx

        from holysheets.analyst.backends import CustomEndpointBackend

        backend = CustomEndpointBackend(
            "http://models.local",
            client=self._client(lambda request: httpx.Response(200, json={"response": "print(4)"})),
        )
        assert backend.generate("p") == "print(4)"

    @pytest.mark.parametrize("status, reason", [(429, "quota"), (401, "auth"), (500, "transport")])
    def test_http_errors(self, status, reason):
        import httpx

        from holysheets.analyst.backends import CustomEndpointBackend
        from holysheets.analyst.errors import GenerationError

        backend = CustomEndpointBackend(
            "http://models.local",
            client=self._client(lambda request: httpx.Response(status, json={})),
        )
        with pytest.raises(GenerationError) as excinfo:
            backend.generate("p")
        assert excinfo.value.reason == reason

    def test_non_json_reply(self):
        import httpx

        from holysheets.analyst.backends import CustomEndpointBackend
        from holysheets.analyst.errors import GenerationError

        backend = CustomEndpointBackend(
            "http://models.local",
            client=self._client(lambda request: httpx.Response(200, text="<html>")),
        )
        with pytest.raises(GenerationError) as excinfo:
            backend.generate("p")
        assert excinfo.value.reason == "malformed_response"

    def test_missing_url(self):
        from holysheets.analyst.backends import CustomEndpointBackend
        from holysheets.analyst.errors import GenerationError

        with pytest.raises(GenerationError) as excinfo:
            CustomEndpointBackend("")
        assert excinfo.value.reason == "config"


class TestSelection:
    def test_selector_builds_lazily_per_mode(self, scripted):
        from holysheets.analyst.backends import BackendSelector

        built = []
        remote = scripted([], name="remote")

        def make_local():
            built.append("local")
            return scripted([], name="local", mode="local")

        selector = BackendSelector(remote=remote, local=make_local)
        assert selector.select(False) is remote
        assert built == []
        local = selector.select(True)
        assert local.name == "local"
        assert selector.select(True) is local
        assert built == ["local"]

    def test_selector_without_local(self, scripted):
        from holysheets.analyst.backends import BackendSelector
        from holysheets.analyst.errors import GenerationError

        selector = BackendSelector(remote=scripted([]))
        with pytest.raises(GenerationError) as excinfo:
            selector.select(True)
        assert excinfo.value.reason == "config"

    def test_make_remote_backend_by_provider(self):
        from holysheets.analyst.backends import (
            CustomEndpointBackend,
            LiteLLMBackend,
            OpenAICompatibleBackend,
            make_remote_backend,
        )
        from holysheets.config import HolySheetsConfig

        cfg = HolySheetsConfig(_env_file=None, custom_endpoint_url="http://models.local")
        assert isinstance(make_remote_backend(cfg), LiteLLMBackend)
        assert isinstance(make_remote_backend(cfg, provider="openai_compatible"), OpenAICompatibleBackend)
        assert isinstance(make_remote_backend(cfg, provider="custom"), CustomEndpointBackend)
        assert make_remote_backend(cfg, model="groq/llama3-70b-8192").model == "groq/llama3-70b-8192"
        with pytest.raises(ValueError):
            make_remote_backend(cfg, provider="bard")
