"""
Persistent store adapter over SQLAlchemy async sessions.

Every cross-entity guarantee in the dispatch core rests on the
conditional_update primitive here: one UPDATE ... WHERE statement,
committed on its own, whose affected-row count tells the caller whether
its compare-and-set landed. Zero rows means "no row matched"; an
unreachable store raises StoreUnavailableError instead.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

from sqlalchemy import delete, func, select, text, update
from sqlalchemy.ext.asyncio import AsyncSession

from lastmile.app.core.config import settings
from lastmile.app.core.reliability import call_with_retry
from lastmile.app.db.session import AsyncSessionLocal

logger = logging.getLogger("lastmile.store")


class SqlStore:
    """Store adapter bound to one session (one request)."""
    
    def __init__(self, session: AsyncSession):
        self.session = session
    
    async def _rollback(self) -> None:
        try:
            await self.session.rollback()
        except Exception:
            logger.warning("Rollback before retry failed", exc_info=True)
    
    async def _run(self, operation: str, func, timeout: Optional[float] = None):
        return await call_with_retry(
            func, operation=operation, timeout=timeout, on_retry=self._rollback
        )
    
    async def get(
        self,
        model,
        *criteria,
        order_by: Sequence[Any] = (),
        limit: Optional[int] = None,
    ) -> List[Any]:
        """Rows of model matching all criteria."""
        stmt = select(model).where(*criteria).execution_options(populate_existing=True)
        if order_by:
            stmt = stmt.order_by(*order_by)
        if limit is not None:
            stmt = stmt.limit(limit)
        
        async def op():
            result = await self.session.execute(stmt)
            return list(result.scalars().all())
        
        return await self._run(f"Get {model.__tablename__}", op)
    
    async def first(self, model, *criteria, order_by: Sequence[Any] = ()) -> Optional[Any]:
        rows = await self.get(model, *criteria, order_by=order_by, limit=1)
        return rows[0] if rows else None
    
    async def count(self, model, *criteria) -> int:
        stmt = select(func.count()).select_from(model).where(*criteria)
        
        async def op():
            result = await self.session.execute(stmt)
            return int(result.scalar() or 0)
        
        return await self._run(f"Count {model.__tablename__}", op)
    
    async def insert(self, *rows) -> List[Any]:
        """Insert rows and commit; returns them with generated keys loaded."""
        
        async def op():
            self.session.add_all(rows)
            await self.session.commit()
            for row in rows:
                await self.session.refresh(row)
            return list(rows)
        
        table = rows[0].__tablename__ if rows else "rows"
        return await self._run(f"Insert {table}", op)
    
    async def conditional_update(self, model, values: Dict[str, Any], *criteria) -> int:
        """
        Compare-and-set update.
        
        criteria must include the expected prior value of every field being
        swapped. Returns the number of rows the statement affected.
        """
        stmt = (
            update(model)
            .where(*criteria)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        
        async def op():
            result = await self.session.execute(stmt)
            await self.session.commit()
            return result.rowcount
        
        return await self._run(f"Update {model.__tablename__}", op)
    
    async def delete(self, model, *criteria) -> List[Any]:
        """Delete matching rows and return what was removed."""
        
        async def op():
            result = await self.session.execute(select(model).where(*criteria))
            victims = list(result.scalars().all())
            if victims:
                await self.session.execute(
                    delete(model).where(*criteria).execution_options(synchronize_session=False)
                )
                await self.session.commit()
                for victim in victims:
                    self.session.expunge(victim)
            return victims
        
        return await self._run(f"Delete {model.__tablename__}", op)
    
    async def ping(self, timeout: Optional[float] = None) -> None:
        """Cheap round trip with the short health-probe timeout."""
        
        async def op():
            await self.session.execute(text("SELECT 1"))
        
        await call_with_retry(
            op,
            operation="Health probe",
            attempts=0,
            timeout=settings.health_timeout_seconds if timeout is None else timeout,
        )


@asynccontextmanager
async def session_store(session_factory=None) -> AsyncIterator[SqlStore]:
    """Store on a session of its own, for work that outlives a request."""
    async with (session_factory or AsyncSessionLocal)() as session:
        yield SqlStore(session)
