"""
Portfolio Platform
AI module — assessment result generation.

Submodules:
    - gateway: LLM Gateway (provider routing, rate-limit retry, streaming, usage logging)
    - response_repair: JSON extraction and truncation repair for model output
    - result_mapper: parsed model output → canonical ResultDocument
    - path_expression: section path parser (``quick_wins[2].title``)
    - prompt_builder: default assessment prompt producer
    - generation: GenerationOrchestrator (gateway → repair → mapping)
"""
