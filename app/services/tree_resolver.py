"""
部件树解析

部件以扁平行 + parent_id 存储，不在事务之外持有内存中的对象图：
每次动作执行前都在当前事务（已持有资产锁）内重新解析子树，
同一次拆解中前面动作造成的结构变化对后续动作立即可见。
"""

from collections import defaultdict
from typing import Dict, Iterable, List, Set

from sqlalchemy import select
from sqlalchemy.orm import Session, aliased

from app.models.asset_models import Component


def descendants(db: Session, component_id: int) -> Set[int]:
    """返回部件的全部后代ID（递归CTE，从直接子节点开始的传递闭包）

    UNION 去重保证结果无重复，数据异常成环时递归也会终止。叶子节点返回空集合。
    """
    closure = (
        select(Component.id.label("id"))
        .where(Component.parent_id == component_id)
        .cte(name="descendants", recursive=True)
    )
    parent = closure.alias("parent_nodes")
    child = aliased(Component, name="child_nodes")
    closure = closure.union(
        select(child.id).join(parent, child.parent_id == parent.c.id)
    )
    ids = set(db.execute(select(closure.c.id)).scalars().all())
    ids.discard(component_id)
    return ids


def subtree(db: Session, component_id: int) -> List[int]:
    """部件自身 + 全部后代，根节点在首位"""
    return [component_id] + sorted(descendants(db, component_id))


def bottom_up_levels(db: Session, root_id: int, descendant_ids: Iterable[int]) -> List[List[int]]:
    """按层级返回后代ID，最深的层在前（不含根节点）

    删除部件时逐层执行，先删子节点再删父节点，满足自引用外键。
    """
    descendant_ids = list(descendant_ids)
    if not descendant_ids:
        return []

    rows = (
        db.query(Component.id, Component.parent_id)
        .filter(Component.id.in_(descendant_ids))
        .all()
    )
    children: Dict[int, List[int]] = defaultdict(list)
    for component_id, parent_id in rows:
        children[parent_id].append(component_id)

    levels: List[List[int]] = []
    visited = {root_id}
    frontier = [root_id]
    while frontier:
        next_level = []
        for parent_id in frontier:
            for child_id in children.get(parent_id, []):
                if child_id not in visited:
                    visited.add(child_id)
                    next_level.append(child_id)
        if next_level:
            levels.append(sorted(next_level))
        frontier = next_level

    levels.reverse()
    return levels
