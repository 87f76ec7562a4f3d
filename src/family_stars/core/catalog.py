"""Static stage and badge catalog.

The catalog is immutable at runtime. Stages are ordered by required stars;
badge buckets are ordered, half-open star ranges that never overlap.
"""

from dataclasses import dataclass
from typing import Dict, Tuple


@dataclass(frozen=True)
class StageDefinition:
    """A lifecycle stage reached at a cumulative star threshold."""

    number: int
    required_stars: int
    name: str


@dataclass(frozen=True)
class BadgeBucket:
    """A star range that groups badges (``min_stars`` inclusive, ``max_stars`` exclusive)."""

    name: str
    min_stars: int
    max_stars: int

    def contains(self, total_stars: int) -> bool:
        return self.min_stars <= total_stars < self.max_stars


@dataclass(frozen=True)
class BadgeDefinition:
    """A cosmetic badge unlocked at a star threshold."""

    id: str
    name: str
    description: str
    unlock_stars: int
    bucket: str


STAGES: Tuple[StageDefinition, ...] = (
    StageDefinition(1, 0, "Baby"),
    StageDefinition(2, 50, "Child"),
    StageDefinition(3, 200, "Teen"),
    StageDefinition(4, 350, "Young Adult"),
    StageDefinition(5, 500, "On the Rise"),
    StageDefinition(6, 600, "Adult"),
    StageDefinition(7, 700, "Mature Adult"),
    StageDefinition(8, 800, "Senior"),
    StageDefinition(9, 1000, "Elder"),
)

STAGE_THRESHOLDS: Tuple[int, ...] = tuple(stage.required_stars for stage in STAGES)

# Crossing the top threshold completes the story and resets progress
MILESTONE_STARS: int = STAGES[-1].required_stars

BADGE_BUCKETS: Tuple[BadgeBucket, ...] = (
    BadgeBucket("baby", 0, 50),
    BadgeBucket("child", 50, 200),
    BadgeBucket("teen", 200, 350),
    BadgeBucket("adult", 350, 500),
    BadgeBucket("on_the_rise", 500, 600),
)


def _bucket(bucket: str, entries: Tuple[Tuple[int, str, str], ...]) -> Tuple[BadgeDefinition, ...]:
    return tuple(
        BadgeDefinition(
            id=f"{bucket.replace('_', '')}_{stars}",
            name=name,
            description=description,
            unlock_stars=stars,
            bucket=bucket,
        )
        for stars, name, description in entries
    )


BADGES: Tuple[BadgeDefinition, ...] = (
    _bucket(
        "baby",
        (
            (10, "Pacifier", "First smile melts everyone's heart!"),
            (20, "Rattle", "Discovered the magic of noise!"),
            (30, "Baby bottle", "Powered up with milk!"),
            (40, "Teddy bear", "Found a forever cuddle buddy!"),
        ),
    )
    + _bucket(
        "child",
        (
            (60, "Toy blocks", "Built a masterpiece (and knocked it down)!"),
            (70, "Tooth", "Oops! First tooth is missing!"),
            (80, "Crayon", "Walls are the best canvas!"),
            (90, "Soccer ball", "Scored the first goal (in the wrong net)!"),
            (100, "Backpack", "Ready for the first big school adventure!"),
            (110, "Ice cream", "Life lesson: ice cream melts fast!"),
            (120, "Jump rope", "Can finally jump 10 times without tripping!"),
            (130, "Gold star", 'Teacher says: "Great job!"'),
            (140, "Book", "Reading fairy tales past bedtime."),
            (150, "Birthday hat", "The biggest cake ever, gone in 5 minutes!"),
            (160, "Scooter", "Zooming faster than grown-ups can run!"),
            (170, "Puppy paw", "Best friends forever: me and the dog!"),
            (180, "Sunglasses", "Cool kid alert!"),
            (190, "Puzzle piece", "Finished a puzzle without losing any pieces (miracle)!"),
        ),
    )
    + _bucket(
        "teen",
        (
            (210, "Smartphone", "Texting speed: Olympic level."),
            (220, "Guitar", "First band, terrible name."),
            (230, "Pizza slice", "Dinner of champions."),
            (240, "Schoolbook", "Crammed a month into one night."),
            (250, "Heart", "First crush. Blushing nonstop."),
            (260, "Headphones", "Music = life."),
            (270, "Basketball", "Scored once, brags forever."),
            (280, "Skateboard", "Gravity hurts, but worth it."),
            (290, "Selfie camera", "Perfect angle = 200 tries."),
            (300, "Exam paper", "Passed! Don't ask how."),
            (310, "Hoodie", "Uniform: hoodie 24/7."),
            (320, "Drama mask", "Teen drama: everywhere, always."),
            (330, "Notebook", "Secret diary. Don't peek!"),
            (340, "Bike", "Faster than the bus, cooler too."),
        ),
    )
    + _bucket(
        "adult",
        (
            (360, "Serving Tray", "Carried 5 cups, spilled 4."),
            (370, "Coffee Mug", "Survival fuel unlocked."),
            (380, "Wall Clock", "Discovered Mondays are eternal."),
            (390, "Work Uniform", "First paycheck = instant shopping spree."),
            (400, "Keyboard", "Typing fast looks like hacking."),
            (410, "Phone", "Customer: angry. Me: smiling."),
            (420, "Work Shoes", "Work shoes = torture devices."),
            (430, "Wallet", "Savings? What savings?"),
            (440, "Tie", "Tied a tie after 50 YouTube tutorials."),
            (450, "Laptop", "Ctrl+Z is my superpower."),
            (460, "Pizza Box", "Midnight shift snack tradition."),
            (470, "Coin", 'Learned what "taxes" mean (ouch).'),
            (480, "Alarm Clock", "Alarm ignored = boss angry."),
            (490, "Credit Card", "Credit card balance: nope."),
        ),
    )
    + _bucket(
        "on_the_rise",
        (
            (510, "Compass", "Found a career direction that feels right."),
            (520, "Portfolio", "Your work finally looks like you."),
            (530, "Wardrobe", "Signature style unlocked."),
            (540, "Palate", "Taste upgraded: food, music, everything."),
            (550, "Date Night", "Left on read? Not tonight."),
            (560, "Duo", "Found your person to high-five wins with."),
            (570, "Mentor", "Helping others level up."),
            (580, "Raise", "Paycheck up. Confidence too."),
            (590, "Lanyard", "Conference conquered; contacts gained."),
        ),
    )
)

BADGES_BY_ID: Dict[str, BadgeDefinition] = {badge.id: badge for badge in BADGES}
