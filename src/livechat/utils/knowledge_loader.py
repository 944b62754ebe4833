import yaml
import logging
from pathlib import Path
from typing import Dict, Any

logger = logging.getLogger(__name__)


class KnowledgeLoader:
    _knowledge: Dict[str, Dict[str, Any]] = {}

    @classmethod
    def load(cls, knowledge_name: str) -> Dict[str, Any]:
        """
        Load a bot knowledge base from YAML

        Args:
            knowledge_name: Name of the knowledge file (without .yaml extension)

        Returns:
            Dictionary containing the loaded knowledge base

        Raises:
            FileNotFoundError: If the file doesn't exist
        """
        if knowledge_name not in cls._knowledge:
            knowledge_path = (
                Path(__file__).parent.parent
                / "knowledge"
                / f"{knowledge_name}.yaml"
            )
            if not knowledge_path.exists():
                raise FileNotFoundError(f"Knowledge file {knowledge_name}.yaml "
                                        f"not found")

            with open(knowledge_path, 'r', encoding='utf-8') as f:
                cls._knowledge[knowledge_name] = yaml.safe_load(f)
            logger.info(f"Loaded knowledge base {knowledge_name}")

        return cls._knowledge[knowledge_name]
