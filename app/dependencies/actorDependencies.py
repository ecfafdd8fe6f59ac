from typing import Annotated, Optional
from fastapi import Depends, Header, HTTPException, status
from uuid import UUID


def get_actor_id(x_actor_id: Annotated[Optional[str], Header()] = None) -> UUID:
    """
    Extrae el actor de la operación desde el header X-Actor-Id.
    No existe un usuario "actual" global: cada comando recibe su actor explícito.
    """
    if not x_actor_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing X-Actor-Id header"
        )
    try:
        return UUID(x_actor_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid X-Actor-Id format. Must be a valid UUID"
        )


ActorId = Annotated[UUID, Depends(get_actor_id)]
