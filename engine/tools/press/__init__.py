"""
Press clipping module - client-relevant article extraction from scanned newspapers.

Submodules:
- press_clipping: job orchestration (claim, fetch, chunk loop, filter, index, summary)
- job_processors: background entry point that drives a job to a terminal state
- classifier: size/page classification and per-page PDF splitting
- extraction: vision model client and response outcome classification
- chunk_loop: chunk retries, second pass and soft deadline
- repair: record recovery from truncated model output
- relevance: keyword/client relevance filter
- indexer: embedding and persistence of clippings
- summary: document summary with retry diagnostics
- prompts_press / press_models: prompts and data models
"""
