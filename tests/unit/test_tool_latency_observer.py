from pydantic import BaseModel

from opti_context.formatting.formatter import RequestFormatter
from opti_context.tools.registry import ToolRegistry, ToolSpec
from opti_context.types import LLMRequest


class EchoInput(BaseModel):
    text: str


def test_tool_observer_captures_latency_and_payload() -> None:
    registry = ToolRegistry()

    async def _handler(data: EchoInput) -> LLMRequest:
        return RequestFormatter().format("echo", data.text.upper())

    registry.register(
        ToolSpec(
            name="echo",
            description="uppercase",
            args_schema=EchoInput,
            handler=_handler,
        )
    )

    observed = []
    registry.set_observer(observed.append)
    result = registry.execute("echo", {"text": "hello"})
    registry.set_observer(None)

    assert result.user_prompt == "HELLO"
    assert len(observed) == 1
    assert observed[0].name == "echo"
    assert observed[0].input_payload == {"text": "hello"}
    assert observed[0].latency_ms >= 0.0
    assert len(observed[0].output_preview) <= 320
    assert observed[0].output_preview.startswith('{"systemPrompt"')
