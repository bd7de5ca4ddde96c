def compute_splits(
    total: float,
    participants: list[str],
    excluded: list[str] | None = None,
    custom_splits: dict[str, float] | None = None,
) -> dict[str, float]:
    """Share of ``total`` owed by each participant.

    Equal split by default; the last participant takes the rounding remainder.
    """
    if custom_splits:
        custom_total = sum(custom_splits.values())
        if abs(custom_total - total) > 0.01:
            raise ValueError(f"Custom splits ({custom_total}) don't match total ({total})")
        return {person: round(share, 2) for person, share in custom_splits.items()}

    excluded = excluded or []
    active = [p for p in participants if p not in excluded]
    if not active:
        raise ValueError("No participants to split among")

    per_person = round(total / len(active), 2)
    shares: dict[str, float] = {}
    remaining = total
    for person in active[:-1]:
        shares[person] = per_person
        remaining -= per_person
    shares[active[-1]] = round(remaining, 2)
    return shares


def rescale_splits(splits: dict[str, float], new_total: float) -> dict[str, float]:
    """Keep each person's proportion of the bill when the total changes.

    The last person takes the rounding remainder, as in ``compute_splits``.
    """
    old_total = sum(splits.values())
    if not splits or old_total <= 0:
        return splits

    people = list(splits)
    shares: dict[str, float] = {}
    remaining = new_total
    for person in people[:-1]:
        shares[person] = round(splits[person] * new_total / old_total, 2)
        remaining -= shares[person]
    shares[people[-1]] = round(remaining, 2)
    return shares
