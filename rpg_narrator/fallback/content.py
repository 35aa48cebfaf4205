"""Curated fallback content shipped with the package.

Each entry belongs to one (theme, kind) bucket. Order inside a theme matters:
on equal tag overlap the earlier entry wins.

Extra entries can be loaded from a JSON file (a list of objects with the
FallbackContentEntry fields) via load_entries().
"""

from __future__ import annotations

import json
from pathlib import Path

from rpg_narrator.models import Choice, FallbackContentEntry, SegmentKind

K = SegmentKind


def _c(text: str, outcome: str, *tags: str) -> Choice:
    return Choice(text=text, outcome=outcome, tags=list(tags))


FANTASY: list[FallbackContentEntry] = [
    # ── Opening scenes ──
    FallbackContentEntry(
        id="fantasy-init-gates",
        theme="fantasy", kind=K.INITIAL_SCENE,
        tags=("beginning", "kingdom", "city"),
        body=(
            "Your journey begins at the gates of an old kingdom, where banners snap "
            "in the wind and the smell of bread drifts from the lower town. Guards "
            "wave travellers through without a second look. Somewhere beyond these "
            "walls, your story is waiting."
        ),
        choices=(
            _c("Head for the marketplace", "You follow the crowd toward the noise of haggling merchants.", "marketplace", "city"),
            _c("Ask the guards for news", "The older guard leans on his spear and lowers his voice.", "information", "social"),
            _c("Find an inn for the night", "A painted sign of a sleeping fox marks the nearest inn.", "tavern", "rest"),
        ),
    ),
    FallbackContentEntry(
        id="fantasy-init-elder",
        theme="fantasy", kind=K.INITIAL_SCENE,
        tags=("beginning", "quest", "village"),
        body=(
            "The village elder has sent for you before dawn. Smoke rises from the "
            "northern hills, where no one has lived for a hundred years, and the old "
            "songs say that is how the trouble starts. The elder waits, hands folded, "
            "for your answer."
        ),
        choices=(
            _c("Accept the task", "The elder exhales, relieved, and unrolls a faded map.", "quest_accepted"),
            _c("Ask what the songs say", "The elder hums the first lines of a verse you half remember.", "information", "cautious"),
        ),
    ),
    # ── Scenes ──
    FallbackContentEntry(
        id="fantasy-forest-day",
        theme="fantasy", kind=K.SCENE,
        tags=("forest", "day", "peaceful"),
        body=(
            "The path winds between ancient oaks whose branches knit a green roof "
            "overhead. Sunlight falls through in warm coins on the moss. Birds call "
            "to each other, and the breeze carries the scent of wildflowers."
        ),
    ),
    FallbackContentEntry(
        id="fantasy-forest-deep",
        theme="fantasy", kind=K.SCENE,
        tags=("forest", "mysterious"),
        body=(
            "The deeper you go, the quieter the forest becomes. Strange marks are cut "
            "into the bark of the trees, and the path splits around a lightning-struck "
            "stump."
        ),
        choices=(
            _c("Take the left fork toward the marks", "The carvings grow denser with every step.", "left_path", "mysterious"),
            _c("Take the right fork toward the light", "The trees thin out around a sunny clearing.", "right_path", "clearing"),
        ),
    ),
    FallbackContentEntry(
        id="fantasy-forest-night",
        theme="fantasy", kind=K.SCENE,
        tags=("forest", "night", "atmospheric"),
        body=(
            "Night turns the forest into a maze of shadow and moonlight. Pale fungi "
            "glow along the roots, and something large moves in the undergrowth, then "
            "stops."
        ),
        choices=(
            _c("Make camp", "You clear a patch of ground and coax a small fire to life.", "camp", "rest"),
            _c("Press on by torchlight", "You light a torch and keep walking, every sense alert.", "night_travel"),
        ),
    ),
    FallbackContentEntry(
        id="fantasy-forest-wolf",
        theme="fantasy", kind=K.SCENE,
        tags=("combat", "forest", "creature"),
        requires_tags=("forest",),
        body=(
            "A snarl breaks the quiet. A grey wolf the size of a pony steps onto the "
            "path, head low, eyes fixed on you. It begins to circle."
        ),
        choices=(
            _c("Draw your weapon", "Steel rings free and the wolf checks its stride.", "combat", "brave"),
            _c("Back away slowly", "You retreat step by step without breaking its gaze.", "retreat", "cautious"),
        ),
    ),
    FallbackContentEntry(
        id="fantasy-night-ambush",
        theme="fantasy", kind=K.SCENE,
        tags=("combat", "night"),
        body=(
            "In the dark every shadow could hide a blade. A twig snaps to your left, "
            "then another to your right. You are not alone."
        ),
    ),
    FallbackContentEntry(
        id="fantasy-city-market",
        theme="fantasy", kind=K.SCENE,
        tags=("city", "marketplace", "social"),
        body=(
            "The market square hums with voices. Stalls sell everything from turnips "
            "to bottled lightning, and a juggler keeps five burning torches in the air "
            "while the crowd counts along."
        ),
        choices=(
            _c("Browse the potion stall", "The alchemist eyes your purse before your face.", "shopping"),
            _c("Listen for rumours", "Two porters argue about a caravan that never arrived.", "information", "social"),
        ),
    ),
    FallbackContentEntry(
        id="fantasy-tavern-evening",
        theme="fantasy", kind=K.SCENE,
        tags=("tavern", "social", "evening"),
        excludes_tags=("wilderness",),
        body=(
            "The common room is warm and loud. Merchants trade stories at the long "
            "table, a hooded figure nurses a drink in the corner, and the dwarf behind "
            "the bar nods at you as you come in."
        ),
    ),
    # ── Dialogue ──
    FallbackContentEntry(
        id="fantasy-dialogue-stranger",
        theme="fantasy", kind=K.DIALOGUE,
        tags=("social", "mysterious"),
        body=(
            '"You have the look of someone who asks too many questions," the stranger '
            'says, sliding a coin across the table. "Good. I have answers that need '
            'asking about."'
        ),
    ),
    FallbackContentEntry(
        id="fantasy-dialogue-guard",
        theme="fantasy", kind=K.DIALOGUE,
        tags=("city", "guard"),
        body=(
            '"Gates close at sundown," the guard says without looking up. "After '
            'that you talk to the captain, and the captain does not like talking."'
        ),
    ),
    # ── Actions ──
    FallbackContentEntry(
        id="fantasy-action-climb",
        theme="fantasy", kind=K.ACTION,
        tags=("mountain", "travel"),
        body=(
            "You find a handhold, then another. Loose stones skitter away beneath "
            "your boots, but the ledge holds, and with one last pull you are over the "
            "top."
        ),
    ),
    FallbackContentEntry(
        id="fantasy-action-strike",
        theme="fantasy", kind=K.ACTION,
        tags=("combat",),
        body=(
            "You step inside the swing and strike. The blow lands hard and your "
            "opponent staggers back, suddenly wary."
        ),
    ),
    # ── Transitions ──
    FallbackContentEntry(
        id="fantasy-transition-mountains",
        theme="fantasy", kind=K.TRANSITION,
        tags=("travel", "mountain"),
        body=(
            "Days pass on the road. Rolling hills give way to broken rock, and the "
            "air grows thin and cold as the mountains rise ahead."
        ),
    ),
    FallbackContentEntry(
        id="fantasy-transition-river",
        theme="fantasy", kind=K.TRANSITION,
        tags=("travel", "river"),
        body=(
            "You follow the river downstream. The going is easy and the fishing good, "
            "and on the third morning you see chimney smoke beyond the bend."
        ),
    ),
    # ── Choices ──
    FallbackContentEntry(
        id="fantasy-choice-crossroads",
        theme="fantasy", kind=K.CHOICE,
        tags=("travel", "crossroads"),
        body="The road splits at a weathered milestone. Each way promises something different.",
        choices=(
            _c("Go north toward the hills", "The road climbs steadily into the wind.", "north"),
            _c("Go east toward the coast", "Gulls circle over the road ahead.", "east"),
            _c("Rest at the milestone", "You sit with your back to the stone and watch the sky.", "rest"),
        ),
    ),
]


SCIFI: list[FallbackContentEntry] = [
    FallbackContentEntry(
        id="scifi-init-station",
        theme="sci-fi", kind=K.INITIAL_SCENE,
        tags=("beginning", "station"),
        body=(
            "You wake in the crew module of a research station orbiting a dead moon. "
            "The lights are at half power and the hatch to the command deck is "
            "sealed. A calm voice tells you that the station has been quiet for six "
            "days."
        ),
        choices=(
            _c("Force the hatch", "The emergency lever groans but gives.", "engineering"),
            _c("Query the station AI", "The voice pauses a moment too long before answering.", "information"),
        ),
    ),
    FallbackContentEntry(
        id="scifi-scene-corridor",
        theme="sci-fi", kind=K.SCENE,
        tags=("station", "night", "mysterious"),
        body=(
            "The corridor lights flicker in a slow rhythm. Frost has crept along the "
            "bulkheads, and a maintenance drone sits motionless in the middle of the "
            "deck, its sensor eye tracking you."
        ),
    ),
    FallbackContentEntry(
        id="scifi-scene-market",
        theme="sci-fi", kind=K.SCENE,
        tags=("city", "marketplace", "social"),
        body=(
            "The orbital bazaar never sleeps. Traders shout prices in a dozen "
            "languages over the hum of cargo lifts, and a street vendor offers you a "
            "cup of something blue and steaming."
        ),
    ),
    FallbackContentEntry(
        id="scifi-dialogue-captain",
        theme="sci-fi", kind=K.DIALOGUE,
        tags=("ship", "crew"),
        body='"Plot the jump," the captain says. "If they follow us through, we make our stand on the other side."',
    ),
    FallbackContentEntry(
        id="scifi-transition-jump",
        theme="sci-fi", kind=K.TRANSITION,
        tags=("travel", "space"),
        body="Stars stretch into lines and snap back. When the ship steadies, a blue-green planet fills the viewport.",
    ),
]


GENERIC: list[FallbackContentEntry] = [
    FallbackContentEntry(
        id="generic-init-1",
        theme="generic", kind=K.INITIAL_SCENE,
        tags=("beginning",),
        body=(
            "A new chapter opens. The world around you is full of possibility, and "
            "the first step is yours to take."
        ),
    ),
    FallbackContentEntry(
        id="generic-scene-1",
        theme="generic", kind=K.SCENE,
        tags=("exploration",),
        body="You take a moment to look around and get your bearings. There is more here than first meets the eye.",
    ),
    FallbackContentEntry(
        id="generic-scene-2",
        theme="generic", kind=K.SCENE,
        tags=("calm",),
        body="For a while nothing stirs. It is a rare moment of quiet, and you make the most of it.",
    ),
    FallbackContentEntry(
        id="generic-dialogue-1",
        theme="generic", kind=K.DIALOGUE,
        tags=("social",),
        body='"I think we should talk," says a voice close by. "There is something you ought to know."',
    ),
    FallbackContentEntry(
        id="generic-action-1",
        theme="generic", kind=K.ACTION,
        tags=(),
        body="You act without hesitation, and the moment turns in your favour.",
    ),
    FallbackContentEntry(
        id="generic-transition-1",
        theme="generic", kind=K.TRANSITION,
        tags=("travel",),
        body="Time passes. The road carries you onward toward whatever waits next.",
    ),
    FallbackContentEntry(
        id="generic-choice-1",
        theme="generic", kind=K.CHOICE,
        tags=(),
        body="You pause to weigh your options.",
        choices=(
            _c("Move forward carefully", "You press on, watching for trouble.", "cautious"),
            _c("Look around for clues", "You take your time and study your surroundings.", "information"),
        ),
    ),
]


def default_entries() -> list[FallbackContentEntry]:
    return [*FANTASY, *SCIFI, *GENERIC]


def load_entries(path: Path) -> list[FallbackContentEntry]:
    """Read extra curated entries from a JSON file (a list of entry objects)."""
    data = json.loads(path.read_text())
    if not isinstance(data, list):
        raise ValueError(f"{path}: fallback content must be a JSON array, got {type(data).__name__}")
    return [FallbackContentEntry.model_validate(item) for item in data]
