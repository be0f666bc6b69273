from typing import Annotated

from pydantic import Field

from giftcircle.models.models import MAX_ID


RecordId = Annotated[int, Field(ge=1, le=MAX_ID)]
