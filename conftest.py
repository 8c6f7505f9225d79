"""Shared fixtures for the Rengu test suite."""
import pytest


class FakeGateway:
    """Stands in for ModelGateway. Replies are consumed in order; an exception
    instance in the queue is raised instead of returned."""

    model = "fake-model"
    api_key = "test-key"

    def __init__(self, replies=None, structured=None, image_replies=None, reachable=True):
        self.replies = list(replies or [])
        self.structured = list(structured or [])
        self.image_replies = list(image_replies or [])
        self.reachable = reachable
        self.calls = []

    @staticmethod
    def _next(queue, default):
        item = queue.pop(0) if queue else default
        if isinstance(item, Exception):
            raise item
        return item

    async def complete(self, prompt_text, **kwargs):
        self.calls.append(("complete", prompt_text, kwargs))
        return self._next(self.replies, "")

    async def complete_structured(self, prompt_text, schema, reference_char=None):
        self.calls.append(("structured", prompt_text, {"schema": schema, "reference_char": reference_char}))
        return self._next(self.structured, None)

    async def complete_with_image(self, prompt_text, image_bytes, mime_type="image/png"):
        self.calls.append(("image", prompt_text, {"image_bytes": image_bytes, "mime_type": mime_type}))
        return self._next(self.image_replies, "")

    async def check_connectivity(self):
        return self.reachable


@pytest.fixture()
def make_gateway():
    return FakeGateway
