"""Configuration constants for the paper digest pipeline."""

MODEL = "gpt-4o-mini"

# Batch ingestion
MAX_BATCH_SIZE = 50
INTER_CALL_DELAY = 3.0  # seconds between documents
RATE_LIMIT_COOLDOWN = 5.0  # extra wait after a 429
MIN_TEXT_LENGTH = 50

# Characters of document text sent to each service
METADATA_TEXT_LIMIT = 25000
CONCEPT_TEXT_LIMIT = 15000
EXPLAIN_CONTEXT_LIMIT = 300

EXPLAIN_DEBOUNCE = 0.6  # seconds of quiet before a term lookup is sent
EXPLAIN_FALLBACK = "Explanation unavailable."

PLAINTEXT_EXTENSIONS = {".txt", ".md", ".text", ".markdown"}

METADATA_PROMPT = """You are an expert academic paper interpreter for students. Given the text of a research paper, extract a structured summary.

Return JSON with this exact schema:
{
  "title": "paper title",
  "type": "paper type, e.g. empirical study, survey, methodology",
  "year": 2017,
  "venue": "conference or journal",
  "authors": ["author names"],
  "affiliations": ["authors' institutions found in the text"],
  "url": "DOI or URL if present, else empty string",
  "keywords": ["keywords"],
  "citation_count": 0,
  "abstract": "summary of the paper",
  "problem_solved": "what problem it solves, in plain words",
  "method_used": "what method it uses, in plain words",
  "implementation": "implementation details",
  "results": "key results",
  "impact": "impact on the field",
  "comparison": "comparison with other methods",
  "takeaway": "the single most important takeaway"
}

Rules:
- title, type, year, abstract, problem_solved, method_used and takeaway are required
- Explain descriptive fields like you are talking to a smart high school student
- Estimate citation_count if unknown, or use 0"""

CONCEPT_PROMPT = """Extract key technical terms and concepts from this text for a knowledge graph.

Return JSON with this exact schema:
{
  "nodes": [
    {
      "id": "short canonical name of the concept",
      "group": "small integer grouping related concepts",
      "desc": "simple layman definition",
      "val": "importance from 10 to 30"
    }
  ],
  "links": [
    {
      "source": "concept id (must match a node above)",
      "target": "concept id (must match a node above)",
      "value": "relation strength from 1 to 10"
    }
  ]
}"""

EXPLAIN_PROMPT = """Explain the text "{fragment}" found in this paper context:
"{context}..."

Target Audience: {audience}.
Tone: Friendly, simple, easy to understand.
Constraint: Keep it under 60 words. Use a metaphor if it helps."""

AUDIENCES = {
    "beginner": "primary school student (5 year old)",
    "standard": "university student",
    "expert": "PhD researcher",
}

# Layout simulation
LINK_DISTANCE = 100.0
LINK_WEIGHT_CAP = 10.0
CHARGE_STRENGTH = -300.0
CENTER_STRENGTH = 1.0
COLLIDE_PADDING = 5.0
VELOCITY_DECAY = 0.4
ALPHA_MIN = 0.001
ALPHA_DECAY = 1 - ALPHA_MIN ** (1 / 300)
DRAG_ALPHA_TARGET = 0.3
KINETIC_ENERGY_THRESHOLD = 0.01
VIEWPORT = (800.0, 600.0)
TICK_INTERVAL = 1 / 60

GROUP_COLORS = ["#60a5fa", "#a78bfa", "#f472b6", "#34d399", "#fbbf24"]
