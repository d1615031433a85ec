"""
Story storage services.

- query_support: query semantics shared by every index backend
- sqlite_index / postgres_index / dynamodb_index: MetadataIndex backends
- content_store / local_content: ContentStore backends
- backends: backend selector
- story_service: StoryService orchestration
"""
