"""Identifier normalization: short, low-entropy names become vocabulary names."""

import logging

from codeunveil.core.lexer import identifier_tokens, substitute_identifiers, tokenize
from codeunveil.stages.base import Stage, StageContext
from codeunveil.stages.naming import is_generated_name, is_obfuscated_name, vocabulary_name

logger = logging.getLogger(__name__)


class IdentifierNormalizationStage(Stage):
    """Rename obfuscated identifiers to data_1, value_2, result_3, ..."""

    name = "identifiers"
    description = "Rename short obfuscated identifiers"
    priority = 60

    def process(self, context: StageContext) -> StageContext:
        code = context.code
        language = context.language
        preserve = context.options.get("preserve_common_names", True)
        produced = set(context.function_table.values()) | set(context.variable_map.values())

        candidates = []
        for token in identifier_tokens(code, language):
            name = token.text
            if name in candidates or name in produced:
                continue
            if context.profile.is_protected(name) or is_generated_name(name):
                continue
            if is_obfuscated_name(name, preserve):
                candidates.append(name)

        if not candidates:
            return context

        taken = {t.text for t in tokenize(code, language)} | produced
        mapping = {}
        index = 1
        for name in candidates:
            replacement = vocabulary_name(index)
            while replacement in taken:
                index += 1
                replacement = vocabulary_name(index)
            mapping[name] = replacement
            taken.add(replacement)
            index += 1

        context.code = substitute_identifiers(code, language, mapping)
        context.variable_map.update(mapping)
        context.bump("variables_renamed", len(mapping))
        context.log_step(f"Renamed {len(mapping)} obfuscated variables")
        logger.debug("Identifier map: %s", mapping)
        return context
