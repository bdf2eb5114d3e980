"""Tests for context formatting and answer composition."""
import httpx
import pytest

from cardano_rag.rag.composer import NO_CONTEXT_ANSWER, ResponseComposer
from cardano_rag.rag.errors import GenerationUnavailable
from cardano_rag.rag.router import RetrievalResult


def result(i, text="Some chunk text.", heading=""):
    return RetrievalResult(
        chunk_id=f"c{i}",
        text=text,
        doc_id=f"doc{i}.md",
        category="core",
        score=1.0 - i / 10,
        heading_context=heading,
    )


def test_build_context_numbers_sources(generator):
    composer = ResponseComposer(generator, max_context_chars=4000)

    context = composer.build_context([result(1, heading="# Intro"), result(2)])

    assert "[Source 1: doc1.md > # Intro]\nSome chunk text." in context
    assert "[Source 2: doc2.md]" in context


def test_build_context_empty(generator):
    assert ResponseComposer(generator).build_context([]) == ""


def test_build_context_truncates_to_budget(generator):
    composer = ResponseComposer(generator, max_context_chars=700)
    results = [result(i, text="x" * 400) for i in range(1, 4)]

    context = composer.build_context(results)

    assert "[Source 1:" in context
    assert "[Source 2:" in context
    assert "[Source 3:" not in context
    assert context.rstrip().endswith("...")
    assert len(context) <= 700


def test_build_prompt_contains_question_and_context(generator):
    prompt = ResponseComposer(generator).build_prompt("What is a datum?", "[Source 1: a.md]\ntext")

    assert "Question: What is a datum?" in prompt
    assert "[Source 1: a.md]" in prompt


@pytest.mark.asyncio
async def test_compose_calls_generator(generator):
    composer = ResponseComposer(generator)

    answer = await composer.compose("What is a datum?", [result(1)])

    assert answer == generator.answer
    assert len(generator.prompts) == 1
    assert "What is a datum?" in generator.prompts[0]
    assert "Some chunk text." in generator.prompts[0]


@pytest.mark.asyncio
async def test_compose_without_results_skips_generator(generator):
    answer = await ResponseComposer(generator).compose("Anything?", [])

    assert answer == NO_CONTEXT_ANSWER
    assert generator.prompts == []


@pytest.mark.parametrize("max_chars", [450, 700, 1000, 1300])
def test_build_context_never_exceeds_budget(generator, max_chars):
    composer = ResponseComposer(generator, max_context_chars=max_chars)
    results = [result(i, text="y" * 400) for i in range(1, 6)]

    assert len(composer.build_context(results)) <= max_chars


class UnreachableGenerator:
    async def generate(self, prompt: str) -> str:
        raise httpx.ConnectError("connection refused")


@pytest.mark.asyncio
async def test_compose_wraps_generator_failure():
    composer = ResponseComposer(UnreachableGenerator())

    with pytest.raises(GenerationUnavailable):
        await composer.compose("What is a datum?", [result(1)])
