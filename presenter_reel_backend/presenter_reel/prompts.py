from .models import ContentType, Emotion, Role, ShotType

VIDEO_PROMPT_TEMPLATE = (
    "Sports analysis video featuring the person from the reference image. "
    "{framing}, {expression}. "
    "Speaking in SPANISH FROM SPAIN (not Mexican Spanish): \"{dialogue}\" "
    "Exact appearance from reference image."
)

VIDEO_PROMPT_MAX_LENGTH = 500

REFERENCE_PROMPT_TEMPLATE = (
    "ultra realistic cinematic portrait, {presenter}, presenting inside the studio, "
    "same person as in the reference images, {framing}, {expression}, "
    "natural skin texture, shallow depth of field"
)

EMOTION_EXPRESSIONS = {
    Emotion.CURIOSIDAD: "curious expression with raised eyebrows",
    Emotion.AUTORIDAD: "confident smile with direct eye contact",
    Emotion.URGENCIA: "pointing at camera with urgent expression",
    Emotion.VALIDACION: "approving nod with a knowing smile",
    Emotion.EXCITEMENT: "excited expression with wide smile and raised eyebrows",
    Emotion.INTRIGUE: "focused analytical expression looking at data",
    Emotion.CONFIDENCE: "confident smile with direct eye contact",
    Emotion.SURPRISE: "surprised expression with open mouth",
    Emotion.ENTHUSIASM: "energetic expression with bright eyes",
    Emotion.ANALYSIS: "thoughtful expression while analyzing",
    Emotion.CONCERN: "concerned expression with furrowed brows",
    Emotion.DETERMINATION: "determined expression with strong eye contact",
    Emotion.JOY: "joyful smile with genuine happiness",
    Emotion.SATISFACTION: "satisfied smile with relaxed posture",
    Emotion.ANTICIPATION: "anticipatory expression with slight smile",
    Emotion.TENSION: "tense expression with focused gaze",
    Emotion.RESOLUTION: "resolved expression with calm demeanor",
}

DEFAULT_EXPRESSION = "confident professional expression"

IMAGE_FRAMING = {
    ShotType.WIDE: "full body shot showing the studio environment around her",
    ShotType.MEDIUM: "waist-up shot, balanced composition",
    ShotType.MEDIUM_CLOSEUP: "chest-up shot, balanced intimate framing",
    ShotType.CLOSEUP: "close-up on face and shoulders, intimate framing",
}

# Used when a plan is requested without a script: (emotion, text) per role.
TEMPLATE_DIALOGUE = {
    ContentType.CHOLLO: {
        Role.INTRO: (Emotion.CURIOSIDAD, "¿Sabéis qué jugador cuesta menos de cinco millones y está rindiendo como una estrella? Quédate conmigo porque este chollo puede cambiar tu jornada de Fantasy."),
        Role.ANALYSIS: (Emotion.AUTORIDAD, "Los números no mienten: tres goles en cuatro partidos, titular indiscutible y un calendario muy favorable. Su precio todavía no refleja lo que está aportando al equipo."),
        Role.MIDDLE: (Emotion.VALIDACION, "Lo he comparado con los delanteros más caros de la liga y su rendimiento por millón es el mejor de toda la competición esta temporada."),
        Role.OUTRO: (Emotion.URGENCIA, "Fichadlo ahora antes de que suba de precio, porque cuando todos se den cuenta ya será tarde. Dejad en comentarios a quién vais a vender."),
    },
    ContentType.ANALYSIS: {
        Role.INTRO: (Emotion.INTRIGUE, "Hoy vamos a analizar por qué este equipo ha cambiado por completo su forma de jugar y qué significa eso para vuestras alineaciones de Fantasy."),
        Role.ANALYSIS: (Emotion.ANALYSIS, "Presionan más arriba, recuperan el balón antes y generan el doble de ocasiones que hace un mes. Los datos de las últimas cinco jornadas lo confirman."),
        Role.MIDDLE: (Emotion.CONFIDENCE, "Eso beneficia sobre todo a sus centrocampistas, que ahora llegan más al área y suman puntos por disparos, pases clave y recuperaciones en cada partido."),
        Role.OUTRO: (Emotion.DETERMINATION, "Mi consejo es claro: apostad por sus centrocampistas esta jornada y vigilad el calendario. Contadme en comentarios si estáis de acuerdo con este análisis."),
    },
    ContentType.BREAKING: {
        Role.INTRO: (Emotion.URGENCIA, "Atención, última hora: el entrenador acaba de confirmar una baja importante para el partido del domingo y esto lo cambia todo en vuestras plantillas de Fantasy."),
        Role.ANALYSIS: (Emotion.CONCERN, "La lesión es muscular y los médicos hablan de al menos tres semanas fuera, así que se perderá varios partidos clave del calendario más exigente."),
        Role.MIDDLE: (Emotion.TENSION, "Su sustituto natural es un canterano con pocos minutos esta temporada, pero tiene un precio muy bajo y puede ser titular durante todo este mes."),
        Role.OUTRO: (Emotion.URGENCIA, "Revisad vuestras alineaciones ahora mismo antes de que cierre la jornada. Activad las notificaciones para no perderos ninguna noticia de última hora como esta."),
    },
    ContentType.PREDICTION: {
        Role.INTRO: (Emotion.ANTICIPATION, "¿Quién creéis que va a ser el máximo puntuador de la próxima jornada? Tengo una predicción muy clara y os la voy a explicar ahora mismo."),
        Role.ANALYSIS: (Emotion.ANALYSIS, "Juega en casa contra el equipo que más goles encaja de la liga, lleva tres partidos marcando y es el encargado de lanzar todos los penaltis."),
        Role.MIDDLE: (Emotion.CONFIDENCE, "Las casas de apuestas ya lo sitúan como favorito para marcar, y su media de puntos en casa duplica la de sus partidos fuera de su estadio."),
        Role.OUTRO: (Emotion.EXCITEMENT, "Mi predicción: gol y asistencia este fin de semana. Guardad este vídeo y volved el lunes para comprobar si he acertado con mi apuesta de la jornada."),
    },
    ContentType.GENERIC: {
        Role.INTRO: (Emotion.CURIOSIDAD, "Bienvenidos a un nuevo vídeo sobre Fantasy. Hoy os traigo una idea sencilla que puede ayudaros a sumar muchos más puntos durante esta jornada de liga."),
        Role.ANALYSIS: (Emotion.ANALYSIS, "Fijaos siempre en el calendario de las próximas tres jornadas antes de fichar, porque un buen jugador con rivales difíciles suele rendir mucho menos de lo esperado."),
        Role.MIDDLE: (Emotion.CONFIDENCE, "Combinad eso con los minutos jugados y el estado de forma, y tendréis una base sólida para decidir a quién fichar y a quién vender cada semana."),
        Role.OUTRO: (Emotion.JOY, "Espero que este consejo os sirva para ganar vuestra liga. Seguidme para más vídeos como este y contadme en comentarios cuál es vuestro mejor fichaje."),
    },
}


def _check_tables():
    missing = [e.value for e in Emotion if e not in EMOTION_EXPRESSIONS]
    missing += [s.value for s in ShotType if s not in IMAGE_FRAMING]
    missing += [
        f"{c.value}/{r.value}" for c in ContentType for r in Role
        if r not in TEMPLATE_DIALOGUE.get(c, {})
    ]
    if missing:
        raise RuntimeError(f"Prompt tables incomplete: {', '.join(missing)}")


_check_tables()


def expression_for(emotion) -> str:
    return EMOTION_EXPRESSIONS.get(emotion, DEFAULT_EXPRESSION)


def build_video_prompt(dialogue: str, emotion: Emotion, framing: str) -> str:
    return VIDEO_PROMPT_TEMPLATE.format(
        framing=framing,
        expression=expression_for(emotion),
        dialogue=dialogue.strip(),
    )


def build_reference_prompt(presenter: str, shot_type: ShotType, emotion: Emotion) -> str:
    return REFERENCE_PROMPT_TEMPLATE.format(
        presenter=presenter,
        framing=IMAGE_FRAMING[shot_type],
        expression=expression_for(emotion),
    )
