"""
Built-in tool definitions.

These are seeded into the record store at startup (existing names are left
untouched) and follow the JSON-Schema parameter format understood by both
Anthropic and OpenAI tool calling.
"""

from mcp_gateway.schemas.tools import ToolDefinition

BUILTIN_TOOLS: list[dict] = [
    {
        "name": "web_search",
        "description": "Search the web for information on a given query",
        "category": "web",
        "tags": ["web", "search"],
        "parameters": {
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "The search query"},
                "limit": {
                    "type": "integer",
                    "description": "Maximum number of results to return",
                    "default": 5,
                    "minimum": 1,
                    "maximum": 25,
                },
            },
            "required": ["query"],
        },
    },
    {
        "name": "web_content",
        "description": "Retrieve and extract content from a specific URL",
        "category": "web",
        "tags": ["web", "scraping", "content"],
        "parameters": {
            "type": "object",
            "properties": {
                "url": {"type": "string", "description": "The URL to retrieve content from", "format": "uri"},
                "useCache": {
                    "type": "boolean",
                    "description": "Whether to use cached content if available",
                    "default": True,
                },
            },
            "required": ["url"],
        },
    },
    {
        "name": "web_batch",
        "description": "Retrieve content from multiple URLs in parallel",
        "category": "web",
        "tags": ["web", "scraping", "batch"],
        "parameters": {
            "type": "object",
            "properties": {
                "urls": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Array of URLs to retrieve content from",
                },
                "useCache": {
                    "type": "boolean",
                    "description": "Whether to use cached content if available",
                    "default": True,
                },
            },
            "required": ["urls"],
        },
    },
    {
        "name": "generate_image",
        "description": "Generate an image based on a text prompt",
        "category": "image",
        "tags": ["image", "generation"],
        "parameters": {
            "type": "object",
            "properties": {
                "prompt": {"type": "string", "description": "Detailed description of the image to generate"},
                "provider": {
                    "type": "string",
                    "description": "AI provider to use for image generation",
                    "enum": ["openai", "stability"],
                    "default": "openai",
                },
                "options": {
                    "type": "object",
                    "description": "Additional options for image generation",
                    "properties": {
                        "model": {
                            "type": "string",
                            "description": "For OpenAI: The model to use (dall-e-2 or dall-e-3)",
                            "default": "dall-e-3",
                        },
                        "size": {
                            "type": "string",
                            "description": "For OpenAI: Image size (1024x1024, 512x512, etc.)",
                            "default": "1024x1024",
                        },
                        "negativePrompt": {
                            "type": "string",
                            "description": "For Stability: What to avoid in the image",
                            "default": "low quality, blurry, distorted, deformed features",
                        },
                        "steps": {
                            "type": "integer",
                            "description": "For Stability: Number of diffusion steps",
                            "default": 30,
                        },
                        "width": {"type": "integer", "description": "For Stability: Image width", "default": 1024},
                        "height": {"type": "integer", "description": "For Stability: Image height", "default": 1024},
                    },
                },
            },
            "required": ["prompt"],
        },
    },
    {
        "name": "edit_image",
        "description": "Edit an existing image with a text prompt",
        "category": "image",
        "tags": ["image", "editing"],
        "parameters": {
            "type": "object",
            "properties": {
                "imagePath": {"type": "string", "description": "Path to the image to edit"},
                "prompt": {"type": "string", "description": "Text description of the desired edit"},
                "maskPath": {
                    "type": "string",
                    "description": "Optional path to a mask image (transparent areas indicate where edits apply)",
                },
            },
            "required": ["imagePath", "prompt"],
        },
    },
    {
        "name": "create_image_variation",
        "description": "Create a variation of an existing image",
        "category": "image",
        "tags": ["image", "variation"],
        "parameters": {
            "type": "object",
            "properties": {
                "imagePath": {"type": "string", "description": "Path to the image to create variations of"},
            },
            "required": ["imagePath"],
        },
    },
]


def get_builtin_definitions() -> list[ToolDefinition]:
    """Fresh ToolDefinition instances for every built-in tool."""
    return [ToolDefinition.model_validate(data) for data in BUILTIN_TOOLS]


def get_builtin_definition(name: str) -> ToolDefinition | None:
    for data in BUILTIN_TOOLS:
        if data["name"] == name:
            return ToolDefinition.model_validate(data)
    return None
