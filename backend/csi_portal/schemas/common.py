from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class APIModel(BaseModel):
    """Request body accepting camelCase (portal frontend) or snake_case keys"""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_data(self) -> dict:
        """Only the fields the client actually sent, keyed by snake_case name"""
        return self.model_dump(exclude_unset=True)
