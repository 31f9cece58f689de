from dataclasses import dataclass, field

from marshmallow import Schema, validate
from marshmallow_dataclass import class_schema

from todostore.todostore import TodoSchemaBase
from todosync.gateway import ChangeFeed, ChangesQuery
from todosync.session import Identity, Session

# request and response bodies of the backend's http api,
# shared by the http clients and the reference backend

NOT_BLANK = validate.Regexp(r"\s*\S", error="must not be blank")


@dataclass
class NewTodo:
    text: str = field(metadata={"validate": NOT_BLANK})
    user_id: str = field(metadata={"validate": NOT_BLANK})


@dataclass
class OwnerQuery:
    user_id: str


@dataclass
class LinkRequest:
    email: str = field(metadata={"validate": validate.Email()})


@dataclass
class LinkVerification:
    token: str = field(metadata={"validate": NOT_BLANK})


new_todo_schema: Schema = class_schema(NewTodo, base_schema=TodoSchemaBase)()
owner_query_schema: Schema = class_schema(OwnerQuery, base_schema=TodoSchemaBase)()
changes_query_schema: Schema = class_schema(ChangesQuery, base_schema=TodoSchemaBase)()
change_feed_schema: Schema = class_schema(ChangeFeed, base_schema=TodoSchemaBase)()
link_request_schema: Schema = class_schema(LinkRequest, base_schema=TodoSchemaBase)()
link_verification_schema: Schema = class_schema(
    LinkVerification, base_schema=TodoSchemaBase
)()
identity_schema: Schema = class_schema(Identity, base_schema=TodoSchemaBase)()
session_schema: Schema = class_schema(Session, base_schema=TodoSchemaBase)()
