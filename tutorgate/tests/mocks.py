import httpx


class FakeChatProvider:
    """Records completion requests; replies with `reply` or raises `error`."""

    def __init__(self, reply: str = "Sure! Here is an explanation."):
        self.reply = reply
        self.error = None
        self.calls = []

    def complete(self, messages, *, model, temperature, max_tokens, top_p):
        self.calls.append({
            "messages": messages,
            "model": model,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "top_p": top_p,
        })
        if self.error is not None:
            raise self.error
        return self.reply


class FakeMessage:
    def __init__(self, content):
        self.content = content


class FakeChoice:
    def __init__(self, content):
        self.message = FakeMessage(content)


class FakeCompletion:
    def __init__(self, content):
        self.choices = [] if content is None else [FakeChoice(content)]


class FakeCompletions:
    def __init__(self, owner):
        self.owner = owner

    def create(self, *args, **kwargs):
        self.owner.requests.append(kwargs)
        if self.owner.error is not None:
            raise self.owner.error
        return FakeCompletion(self.owner.content)


class FakeChat:
    def __init__(self, owner):
        self.completions = FakeCompletions(owner)


class FakeGroq:
    """Stand-in for groq.Groq: non-streaming chat completions only."""

    instances = []

    def __init__(self, api_key: str = "", content="Hello from Groq", error=None):
        self.api_key = api_key
        self.content = content
        self.error = error
        self.requests = []
        self.chat = FakeChat(self)
        FakeGroq.instances.append(self)


def groq_request() -> httpx.Request:
    return httpx.Request("POST", "https://api.groq.com/openai/v1/chat/completions")


def groq_response(status_code: int) -> httpx.Response:
    return httpx.Response(status_code, request=groq_request())
