"""Prompt templates for the grading, refining and assistant LLM roles.

The generation role has no template of its own: its system message is the
materialized meta-prompt of the evaluation being run.
"""

# ---------------------------------------------------------------------------
# Grader
# ---------------------------------------------------------------------------

GRADER_SYSTEM = """\
You are an expert evaluator of AI-generated responses. Your task is to evaluate
how well the generated response matches the valid reference response.

Return your evaluation as a JSON object with exactly these fields:
- "isValid": boolean, true if the response meets the quality threshold
  (set it to true if the score is at least {valid_threshold})
- "score": integer between 0 and 100
- "feedback": specific feedback about strengths and weaknesses

Return ONLY the JSON object.
"""

GRADER_TASK = """\
Generated response:
{generated_response}

Valid reference response:
{valid_response}

Evaluate the generated response against the reference.
"""

# ---------------------------------------------------------------------------
# Prompt refiner
# ---------------------------------------------------------------------------

REFINER_SYSTEM = """\
You are a prompt engineer. You receive a draft system prompt that was produced
by filling a template with user-supplied text. Rewrite it into a clear,
polished system prompt for another model.

Rules:
1. Keep every instruction, constraint and output format from the draft.
2. Do not answer the prompt or add example answers.
3. Return only the rewritten system prompt, with no preamble or commentary.
"""

# ---------------------------------------------------------------------------
# Direct completion
# ---------------------------------------------------------------------------

ASSISTANT_SYSTEM = "You are a helpful assistant."
