"""
OpenAI text-generation client.

Turns a system category and a free-text description into a specification
document using the chat completions API.
"""

from typing import Any, Optional

from openai import OpenAI

from ..storage.models import PromptType


SYSTEM_INSTRUCTION = """\
You are a principal software architect, product manager and senior full-stack
engineer working as one team. Given a short description of a website or SaaS
product, write the complete technical specification a code-generation assistant
needs to build it: problem statement and users, core entities and relations,
critical flows and business rules, architecture and stack, folder layout,
data model, UX guidelines, error handling and a test plan. Make every
decision explicit. Answer in Markdown.
"""

USER_TEMPLATE = """\
CONTEXT
System type: {type}
Description and goals: "{description}"

TASK
Fill in the full architecture contract for this system, inferring every
technical detail the description leaves open. Deliver the final document in
Markdown.
"""


class OpenAITextGenerator:
    """Generates specification documents with an OpenAI chat model.

    The underlying client is created on first use, so building the object
    does not require OPENAI_API_KEY to be set.
    """

    def __init__(
        self,
        model: str,
        temperature: float = 0.7,
        max_tokens: int = 8000,
        timeout: float = 60.0,
    ):
        """Initialize the generator.

        Args:
            model: OpenAI model name (required)
            temperature: Sampling temperature
            max_tokens: Maximum tokens to generate
            timeout: Seconds before a request is abandoned

        Raises:
            ValueError: If model is missing/empty
        """
        if not model or not model.strip():
            raise ValueError("model is required and cannot be empty")

        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        self._client: Optional[OpenAI] = None

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            self._client = OpenAI(timeout=self.timeout, max_retries=0)
        return self._client

    def generate(self, prompt_type: PromptType, description: str, **kwargs: Any) -> str:
        """Generate a specification document.

        Args:
            prompt_type: Category of system being described
            description: User-supplied description of the system
            **kwargs: Additional OpenAI parameters

        Returns:
            Generated text; empty string if the model returned no content

        Raises:
            OpenAI API errors: Propagated without modification
        """
        response = self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": SYSTEM_INSTRUCTION},
                {
                    "role": "user",
                    "content": USER_TEMPLATE.format(
                        type=prompt_type.value, description=description
                    ),
                },
            ],
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            **kwargs
        )

        if not response.choices:
            return ""
        return response.choices[0].message.content or ""
