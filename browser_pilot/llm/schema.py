"""
JSON schema helpers for structured output.

Providers with strict json_schema modes reject ``$ref``/``$defs`` and open objects,
so models are flattened before being sent.
"""

from typing import Any

from pydantic import BaseModel


class SchemaOptimizer:
	@staticmethod
	def create_optimized_json_schema(model: type[BaseModel]) -> dict[str, Any]:
		"""
		Create the most optimized schema by flattening all $ref/$defs while preserving
		descriptions and enums.

		Args:
			model: The Pydantic model to optimize

		Returns:
			Optimized schema with all $refs resolved and strict object settings
		"""
		original_schema = model.model_json_schema()
		defs_lookup = original_schema.get('$defs', {})

		def optimize_schema(obj: Any) -> Any:
			if isinstance(obj, dict):
				optimized: dict[str, Any] = {}
				flattened_ref: dict[str, Any] | None = None

				for key, value in obj.items():
					if key in ('$defs', 'additionalProperties', 'default'):
						continue

					# property names are handled below, so this only drops schema titles
					if key == 'title':
						continue

					if key == '$ref':
						ref_name = value.split('/')[-1]
						if ref_name in defs_lookup:
							flattened_ref = optimize_schema(defs_lookup[ref_name])
						continue

					if key == 'properties':
						optimized['properties'] = {
							prop_name: optimize_schema(prop_value) for prop_name, prop_value in value.items()
						}
					elif isinstance(value, (dict, list)):
						optimized[key] = optimize_schema(value)
					else:
						optimized[key] = value

				if flattened_ref is not None:
					# siblings of $ref (description, ...) win over the referenced definition
					result = dict(flattened_ref)
					result.update(optimized)
					optimized = result

				if optimized.get('type') == 'object':
					optimized['additionalProperties'] = False
					if 'properties' in optimized:
						optimized['required'] = list(optimized['properties'].keys())

				return optimized

			if isinstance(obj, list):
				return [optimize_schema(item) for item in obj]

			return obj

		return optimize_schema(original_schema)
