"""Prompt assembly for AI-assisted diagram rendering."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict

from jinja2 import Environment, FileSystemLoader, StrictUndefined

from ..models import DiagramModel
from .mermaid import node_refs


@dataclass
class PromptRequest:
    """System and user prompt for one render call."""

    system: str
    prompt: str
    metadata: Dict[str, object] = field(default_factory=dict)


class DiagramPromptBuilder:
    SYSTEM_PROMPT = (
        "You are a software architect who styles Mermaid diagrams. Stay faithful to the given model, "
        "keep every node identifier, and reply with Mermaid markup only."
    )

    def __init__(self, templates_dir: Path | None = None) -> None:
        self.templates_dir = templates_dir or Path(__file__).with_name("templates")
        directories = [str(self.templates_dir)]
        default_dir = str(Path(__file__).with_name("templates"))
        if default_dir not in directories:
            directories.append(default_dir)
        self._env = Environment(
            loader=FileSystemLoader(directories),
            autoescape=False,
            trim_blocks=True,
            lstrip_blocks=True,
            undefined=StrictUndefined,
        )

    def build(self, model: DiagramModel, diagram_type: str, baseline: str) -> PromptRequest:
        refs = node_refs(model)
        summary = {
            "nodes": [
                {
                    "id": refs[node.component_id],
                    "label": node.label,
                    "kind": node.kind,
                    "cluster": node.cluster,
                }
                for node in model.nodes
            ],
            "edges": [
                {
                    "source": refs.get(edge.source, edge.source),
                    "target": refs.get(edge.target, edge.target),
                    "kind": edge.kind,
                    "weight": edge.weight,
                }
                for edge in model.edges
            ],
        }
        template = self._env.get_template("diagram.j2")
        prompt = template.render(
            diagram_type=diagram_type,
            project_id=model.project_id,
            commit=model.commit,
            header=baseline.splitlines()[0] if baseline else "flowchart",
            node_ids=sorted(refs.values()),
            clusters=model.clusters,
            summary=json.dumps(summary, indent=2, sort_keys=True),
            baseline=baseline.rstrip(),
        )
        return PromptRequest(
            system=self.SYSTEM_PROMPT,
            prompt=prompt,
            metadata={"diagram_type": diagram_type, "nodes": len(model.nodes)},
        )


__all__ = ["DiagramPromptBuilder", "PromptRequest"]
